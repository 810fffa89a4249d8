"""
Data Models for UX Critique

Type-safe, immutable Pydantic models for everything that crosses a
component boundary: the request, retrieved knowledge, annotations,
provider output, quality metrics and the final pipeline result.

Enrichment never mutates a model in place: derive a new record with
``model_copy(update=...)`` so provenance survives retries.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Category = Literal["accessibility", "conversion", "ux", "visual", "brand"]
Severity = Literal["critical", "suggested", "enhancement"]

CATEGORIES: tuple[str, ...] = ("accessibility", "conversion", "ux", "visual", "brand")
SEVERITY_RANK: dict[str, int] = {"critical": 3, "suggested": 2, "enhancement": 1}


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class PipelineOptions(FrozenModel):
    """
    Per-request switches.

    Attributes:
        rag_enabled: Retrieve and validate knowledge-base context
        research_enabled: Run the research enhancement pass
        strict_quality: Apply the strict quality threshold
        business_impact: Enrich accepted annotations with impact metrics
    """

    rag_enabled: bool = False
    research_enabled: bool = False
    strict_quality: bool = False
    business_impact: bool = True


class AnalysisRequest(FrozenModel):
    """
    Immutable analysis input owned by the caller.

    Attributes:
        images: Ordered image references (file path, http(s) URL or data URL)
        prompt: What the caller wants analysed
        options: Default switches, overridable per execute_pipeline() call
        context: Free-form metadata (design type, project name, ...)
    """

    images: tuple[str, ...] = ()
    prompt: str = ""
    options: PipelineOptions = Field(default_factory=PipelineOptions)
    context: dict = Field(default_factory=dict)


class KnowledgeCandidate(FrozenModel):
    """A knowledge-base entry as returned by the retrieval collaborator."""

    id: str
    title: str
    content: str
    category: str = "ux"
    similarity: float = Field(ge=0, le=1)
    industry: Optional[str] = None
    source: Optional[str] = None
    image_relevant: Optional[bool] = Field(
        default=None, description="None means the retriever did not say"
    )
    created_at: Optional[datetime] = None


class ValidatedKnowledge(FrozenModel):
    """Candidate that passed filtering, with possibly truncated content."""

    id: str
    title: str
    content: str
    category: str
    relevance: float = Field(ge=0, le=1)
    industry: Optional[str] = None
    source: Optional[str] = None


class RagImpactAnalysis(FrozenModel):
    hallucination_risk: float = Field(ge=0, le=1)
    context_alignment: float = Field(ge=0, le=1)
    knowledge_quality: float = Field(ge=0, le=1)
    recommendations: list[str] = Field(default_factory=list)


class KnowledgeValidation(FrozenModel):
    """
    Outcome of RAG filtering.

    Attributes:
        entries: Validated entries, highest relevance first
        filtered_count: Candidates rejected by the filters
        relevance_scores: Similarity per candidate id
        filtering_reasons: Rejection reasons per candidate id
        overall_quality: 0-1 quality of the kept set
        impact: Hallucination-risk summary
    """

    entries: list[ValidatedKnowledge] = Field(default_factory=list)
    filtered_count: int = 0
    relevance_scores: dict[str, float] = Field(default_factory=dict)
    filtering_reasons: dict[str, list[str]] = Field(default_factory=dict)
    overall_quality: float = 0.0
    impact: Optional[RagImpactAnalysis] = None


class Coordinates(FrozenModel):
    """Position of a finding, in percent of the image size."""

    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)
    image_index: int = Field(default=0, ge=0)


class ConversionImpact(FrozenModel):
    estimated_increase: str
    confidence: Literal["low", "medium", "high"]
    methodology: str


class RevenueProjection(FrozenModel):
    monthly_increase: str
    annual_projection: str
    assumptions: list[str] = Field(default_factory=list)


class AccessibilityReach(FrozenModel):
    affected_user_percentage: str
    compliance_level: str


class ImplementationEffort(FrozenModel):
    category: Literal["quick-win", "standard", "complex"]
    time_estimate: str
    resources_needed: list[str] = Field(default_factory=list)


class BusinessImpact(FrozenModel):
    """
    Deterministic business-impact estimate for one annotation.

    roi_score and business_value are on a 1-10 scale.
    """

    conversion_impact: ConversionImpact
    revenue_projection: RevenueProjection
    accessibility_reach: AccessibilityReach
    implementation_effort: ImplementationEffort
    business_value: int = Field(ge=1, le=10)
    roi_score: int = Field(ge=1, le=10)
    priority: Literal["critical", "important", "enhancement"]
    risk_level: Literal["low", "medium", "high"]
    justification: str


class Annotation(FrozenModel):
    """
    A single UX finding.

    Attributes:
        id: Unique within one result
        feedback: The critique text
        category: Which aspect of the design it concerns
        severity: How important it is to fix
        coordinates: Where on which image (optional)
        research_validated: Backed by research, if known
        research_sources: Citations or knowledge-base titles
        source_provider: Provider that produced the finding
        merged_from: Other providers that reported the same finding
        business_impact: Impact estimate, attached after acceptance
    """

    id: str
    feedback: str = Field(min_length=1)
    category: Category
    severity: Severity
    coordinates: Optional[Coordinates] = None
    research_validated: Optional[bool] = None
    research_sources: list[str] = Field(default_factory=list)
    source_provider: Optional[str] = None
    merged_from: list[str] = Field(default_factory=list)
    business_impact: Optional[BusinessImpact] = None

    def __str__(self) -> str:
        marker = {"critical": "🔴", "suggested": "🟡", "enhancement": "🟢"}
        return f"{marker[self.severity]} [{self.category}] {self.feedback}"


class ProviderResponse(FrozenModel):
    """Validated output of a single provider call."""

    provider: str
    annotations: list[Annotation]
    confidence: float = Field(ge=0, le=1)
    elapsed_seconds: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        """Self-reported confidence is untrusted: clamp into [0, 1]"""
        return min(1.0, max(0.0, float(v)))


class SynthesisMetadata(FrozenModel):
    """
    How the final annotation set was produced.

    Attributes:
        primary_model: Provider whose output anchors the result
        confidence_score: Weighted confidence of contributing providers
        fallbacks_triggered: Providers escalated to, in order
        total_models_used: Providers that contributed annotations
        weights: Weights renormalised over the contributing providers
        provider_errors: Failure reason per provider id
    """

    primary_model: str
    confidence_score: float = Field(ge=0, le=1)
    fallbacks_triggered: list[str] = Field(default_factory=list)
    total_models_used: int = Field(ge=0)
    weights: dict[str, float] = Field(default_factory=dict)
    provider_errors: dict[str, str] = Field(default_factory=dict)


class OrchestrationResult(FrozenModel):
    annotations: list[Annotation]
    synthesis: SynthesisMetadata
    responses: list[ProviderResponse] = Field(default_factory=list)


class QualityMetrics(FrozenModel):
    """
    Scores in [0, 1]. Recomputed from scratch for every candidate result.
    """

    overall_score: float = Field(ge=0, le=1)
    provider_quality: float = Field(ge=0, le=1)
    synthesis_quality: float = Field(ge=0, le=1)
    research_validation: float = Field(ge=0, le=1)
    professional_standard: bool = False

    @classmethod
    def empty(cls) -> "QualityMetrics":
        return cls(overall_score=0, provider_quality=0, synthesis_quality=0, research_validation=0)


class RecoveryAttempt(FrozenModel):
    strategy: str
    attempted: bool
    accepted: bool = False
    score_before: float = 0.0
    score_after: Optional[float] = None
    note: str = ""


class ResearchFinding(FrozenModel):
    query: str
    content: str
    sources: list[str] = Field(default_factory=list)


class PipelineResult(FrozenModel):
    """
    Terminal value of one pipeline run.

    success implies the annotation count is within the configured bounds
    and overall_score meets the threshold for the requested strictness.
    """

    success: bool
    annotations: list[Annotation] = Field(default_factory=list)
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics.empty)
    synthesis_metadata: Optional[SynthesisMetadata] = None
    processing_stages: list[str] = Field(default_factory=list)
    fallbacks_used: list[str] = Field(default_factory=list)
    violations: list[str] = Field(default_factory=list)
    recovery_attempts: list[RecoveryAttempt] = Field(default_factory=list)
    knowledge: Optional[KnowledgeValidation] = None
    research_enhanced: bool = False
    stage_timings: dict[str, float] = Field(default_factory=dict)
    processing_time_seconds: float = 0.0
    error: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())

    @property
    def critical_annotations(self) -> list[Annotation]:
        return [a for a in self.annotations if a.severity == "critical"]

    def summary(self) -> str:
        """Human-readable summary"""
        status = "PASSED" if self.success else "FAILED"
        summary = f"Status: {status} ({round(self.quality_metrics.overall_score * 100)}% quality)\n"
        summary += f"Annotations: {len(self.annotations)} ({len(self.critical_annotations)} critical)\n"
        if self.synthesis_metadata:
            summary += f"Primary model: {self.synthesis_metadata.primary_model}\n"
        if self.error:
            summary += f"Error: {self.error}\n"
        return summary
