"""
Quality Assessment

Pure scoring of an annotation set plus the final professional-standard
gate. Nothing here has side effects: the same annotations and synthesis
metadata always produce the same QualityMetrics, so every candidate
result (initial or recovered) is scored from scratch.
"""

from typing import Sequence

from .config import PipelineConfig
from .models import Annotation, QualityMetrics, SynthesisMetadata
from .research import has_research_indicator

PREFERRED_BOOST = 1.1
FALLBACK_PENALTY = 0.8
TARGET_FEEDBACK_LENGTH = 200
MULTI_PROVIDER_BONUS = 0.1

OVERALL_WEIGHTS = {"provider": 0.5, "synthesis": 0.3, "research": 0.2}


class QualityAssessor:
    """
    Scores merged annotations against the professional quality bar.

    overall = 0.5 * provider_quality + 0.3 * synthesis_quality
              + 0.2 * research_validation

    Example:
        assessor = QualityAssessor(config)
        metrics = assessor.assess(annotations, synthesis)
        violations = assessor.find_violations(annotations, metrics, strict=False)
    """

    def __init__(self, config: PipelineConfig):
        self.config = config

    def assess(
        self,
        annotations: Sequence[Annotation],
        synthesis: SynthesisMetadata
    ) -> QualityMetrics:
        provider_quality = self.provider_quality(synthesis)
        synthesis_quality = self.synthesis_quality(annotations, synthesis)
        research_validation = self.research_validation(annotations)

        overall = (
            provider_quality * OVERALL_WEIGHTS["provider"] +
            synthesis_quality * OVERALL_WEIGHTS["synthesis"] +
            research_validation * OVERALL_WEIGHTS["research"]
        )
        overall = round(min(1.0, overall), 6)

        bounds = self.config.target_annotations
        professional = (
            bounds.professional <= len(annotations) <= bounds.maximum and
            overall >= self.config.quality.professional
        )

        return QualityMetrics(
            overall_score=overall,
            provider_quality=round(provider_quality, 6),
            synthesis_quality=round(synthesis_quality, 6),
            research_validation=round(research_validation, 6),
            professional_standard=professional,
        )

    def provider_quality(self, synthesis: SynthesisMetadata) -> float:
        """Confidence, boosted when the preferred provider led the analysis."""
        if synthesis.primary_model == self.config.preferred_provider:
            return min(1.0, synthesis.confidence_score * PREFERRED_BOOST)
        return synthesis.confidence_score * FALLBACK_PENALTY

    def synthesis_quality(
        self,
        annotations: Sequence[Annotation],
        synthesis: SynthesisMetadata
    ) -> float:
        if not annotations:
            return 0.0

        categories = {a.category for a in annotations}
        severities = {a.severity for a in annotations}
        diversity = min(1.0, len(categories) * 0.15 + len(severities) * 0.1)

        avg_length = sum(len(a.feedback) for a in annotations) / len(annotations)
        feedback_quality = min(1.0, avg_length / TARGET_FEEDBACK_LENGTH)

        bonus = MULTI_PROVIDER_BONUS if synthesis.total_models_used > 1 else 0.0
        return min(1.0, diversity * 0.4 + feedback_quality * 0.5 + bonus)

    def research_validation(self, annotations: Sequence[Annotation]) -> float:
        """Share of annotations carrying any research-backing marker."""
        if not annotations:
            return 0.0
        backed = sum(1 for a in annotations if is_research_backed(a))
        return backed / len(annotations)

    def find_violations(
        self,
        annotations: Sequence[Annotation],
        metrics: QualityMetrics,
        strict: bool = False
    ) -> list[str]:
        """
        Every threshold the result misses, not just the first.

        Returns:
            Human-readable violations; empty when the result is acceptable
        """
        bounds = self.config.target_annotations
        thresholds = self.config.quality
        count = len(annotations)
        violations = []

        if count < bounds.minimum:
            violations.append(f"annotation count {count} < minimum {bounds.minimum}")
        if count > bounds.maximum:
            violations.append(f"annotation count {count} > maximum {bounds.maximum}")

        required = thresholds.overall_threshold(strict)
        if metrics.overall_score < required:
            violations.append(
                f"overall quality {_pct(metrics.overall_score)} < {_pct(required)}"
            )

        if strict:
            if metrics.provider_quality < thresholds.strict_provider_quality:
                violations.append(
                    f"provider quality {_pct(metrics.provider_quality)} < "
                    f"{_pct(thresholds.strict_provider_quality)}"
                )
            if not metrics.professional_standard:
                violations.append("professional standard not met")

        return violations


def is_research_backed(annotation: Annotation) -> bool:
    return bool(
        annotation.research_validated or
        annotation.research_sources or
        has_research_indicator(annotation.feedback)
    )


def _pct(value: float) -> str:
    return f"{round(value * 100)}%"
