"""
Pipeline Controller

Runs one analysis request through named stages, strictly in order:

    knowledge_retrieval -> model_dispatch -> quality_assessment
    -> research_enhancement -> final_validation
    -> quality_recovery (only on failure) -> business_impact (only on success)

Every stage is recorded in processing_stages when entered. Quality
failures are returned as structured results; only precondition errors
and caller cancellation are raised.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, NamedTuple, Optional, Sequence

from .business_impact import BusinessImpactScorer
from .config import PipelineConfig, Settings
from .context_validator import ContextValidator
from .errors import (
    AllProvidersFailedError,
    AnalysisCancelled,
    PipelineTimeoutError,
    PreconditionError,
    ResearchError,
)
from .log import get_logger
from .models import (
    SEVERITY_RANK,
    AnalysisRequest,
    Annotation,
    KnowledgeValidation,
    PipelineOptions,
    PipelineResult,
    QualityMetrics,
    RecoveryAttempt,
    SynthesisMetadata,
)
from .orchestrator import ModelOrchestrator
from .providers import WeightedProvider, build_provider_chain, get_research_provider
from .quality import QualityAssessor
from .research import ResearchEnhancer
from .retrieval import KnowledgeRetriever
from .timing import Deadline, Timer, check_cancelled, run_with_timeout

logger = get_logger("ux_critique.pipeline")


class Stage(str, Enum):
    KNOWLEDGE_RETRIEVAL = "knowledge_retrieval"
    MODEL_DISPATCH = "model_dispatch"
    QUALITY_ASSESSMENT = "quality_assessment"
    RESEARCH_ENHANCEMENT = "research_enhancement"
    FINAL_VALIDATION = "final_validation"
    QUALITY_RECOVERY = "quality_recovery"
    BUSINESS_IMPACT = "business_impact"


class Candidate(NamedTuple):
    """A fully scored annotation set, initial or recovered."""

    annotations: list[Annotation]
    synthesis: SynthesisMetadata
    metrics: QualityMetrics
    violations: list[str]
    truncated: bool = False
    researched: bool = False


class RunContext:
    """
    Mutable state of a single run. Owned by one execute_pipeline() call
    and discarded with it.
    """

    def __init__(
        self,
        request: AnalysisRequest,
        options: PipelineOptions,
        deadline: Deadline,
        cancel_event: Optional[asyncio.Event] = None
    ):
        self.request = request
        self.options = options
        self.deadline = deadline
        self.cancel_event = cancel_event
        self.prompt = request.prompt.strip()
        self.stages: list[str] = []
        self.stage_timings: dict[str, float] = {}
        self.fallbacks: list[str] = []
        self.knowledge: Optional[KnowledgeValidation] = None
        self.annotations: list[Annotation] = []
        self.synthesis: Optional[SynthesisMetadata] = None
        self.metrics: Optional[QualityMetrics] = None
        self.research_enhanced = False
        self.best: Optional[Candidate] = None
        self.recovery_attempts: list[RecoveryAttempt] = []

    def record_fallback(self, marker: str) -> None:
        if marker not in self.fallbacks:
            self.fallbacks.append(marker)


class RecoveryStrategy(ABC):
    """
    One bounded attempt to improve a failing result.

    A strategy returns a new scored Candidate, or None when it could not
    produce one. The controller decides whether to keep it.
    """

    name: str = "recovery"

    def applies(self, controller: "PipelineController", run: RunContext) -> bool:
        return True

    @abstractmethod
    async def recover(self, controller: "PipelineController", run: RunContext) -> Optional[Candidate]:
        ...


class ForcePrimaryRerun(RecoveryStrategy):
    """Re-dispatch to the preferred provider only, without research."""

    name = "force_primary_rerun"

    def applies(self, controller, run):
        return run.best.synthesis.primary_model != controller.config.preferred_provider

    async def recover(self, controller, run):
        timeout = run.deadline.stage_timeout(controller.config.budget.recovery_fraction)
        try:
            result = await controller.orchestrator.orchestrate(
                run.request.images,
                run.prompt,
                context=run.request.context,
                force_primary=True,
                timeout=timeout,
                cancel_event=run.cancel_event,
            )
        except AllProvidersFailedError as e:
            logger.warning("Forced primary re-run produced nothing: %s", e)
            return None
        return controller.evaluate(result.annotations, result.synthesis, run.options.strict_quality)


class KnowledgeEnhancementPass(RecoveryStrategy):
    """
    Attach knowledge-source backing to the current annotations and
    re-score. No provider calls.
    """

    name = "knowledge_enhancement"

    async def recover(self, controller, run):
        knowledge = run.knowledge.entries if run.knowledge else []
        annotations = controller.research_enhancer.attach_knowledge_sources(run.best.annotations, knowledge)
        return controller.evaluate(
            annotations, run.best.synthesis, run.options.strict_quality, researched=run.best.researched
        )


def default_recovery_strategies() -> list[RecoveryStrategy]:
    return [ForcePrimaryRerun(), KnowledgeEnhancementPass()]


class PipelineController:
    """
    Coordinates retrieval, dispatch, scoring, recovery and enrichment.

    Example:
        config = load_pipeline_config(settings)
        controller = PipelineController(config, build_provider_chain(settings, config))
        result = asyncio.run(controller.execute_pipeline(
            AnalysisRequest(images=("checkout.png",), prompt="Review the checkout flow")
        ))
        print(result.summary())
    """

    def __init__(
        self,
        config: PipelineConfig,
        providers: Sequence[WeightedProvider],
        retriever: Optional[KnowledgeRetriever] = None,
        research_provider=None,
        recovery_strategies: Optional[Sequence[RecoveryStrategy]] = None
    ):
        self.config = config
        self.orchestrator = ModelOrchestrator(providers, config)
        self.assessor = QualityAssessor(config)
        self.context_validator = ContextValidator(config.knowledge)
        self.retriever = retriever
        self.research_provider = research_provider
        self.research_enhancer = ResearchEnhancer(research_provider, max_queries=config.research_max_queries)
        self.impact_scorer = BusinessImpactScorer()
        self.recovery_strategies = list(
            default_recovery_strategies() if recovery_strategies is None else recovery_strategies
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        config: PipelineConfig,
        retriever: Optional[KnowledgeRetriever] = None
    ) -> "PipelineController":
        return cls(
            config,
            build_provider_chain(settings, config),
            retriever=retriever,
            research_provider=get_research_provider(settings),
        )

    async def execute_pipeline(
        self,
        request: AnalysisRequest,
        options: Optional[PipelineOptions] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None
    ) -> PipelineResult:
        """
        Analyse one request.

        Args:
            request: Images, prompt and default options
            options: Overrides request.options for this run
            cancel_event: Set by the caller to abort the run

        Returns:
            PipelineResult; success=False carries violations and an error

        Raises:
            PreconditionError: If the request is invalid (no provider is called)
            AnalysisCancelled: If cancel_event was set during the run
        """
        self.validate_request(request)

        run = RunContext(
            request,
            options or request.options,
            Deadline(self.config.budget.total_seconds),
            cancel_event,
        )
        logger.info(
            "Starting analysis: images=%d rag=%s research=%s strict=%s",
            len(request.images), run.options.rag_enabled,
            run.options.research_enabled, run.options.strict_quality
        )

        try:
            return await self._run(run)
        except AllProvidersFailedError as e:
            for provider_id in list(e.reasons)[1:]:
                run.record_fallback(provider_id)
            logger.error("Analysis failed: %s", e)
            return self._result(run, success=False, error=str(e))
        except PipelineTimeoutError as e:
            logger.error("Analysis failed: %s", e)
            return self._result(run, success=False, error=str(e))

    def validate_request(self, request: AnalysisRequest) -> None:
        """
        Raises:
            PreconditionError: Listing every problem found
        """
        cfg = self.config
        errors = []

        if not request.images:
            errors.append("At least one image is required")
        elif len(request.images) > cfg.max_images:
            errors.append(f"Too many images: {len(request.images)} (max {cfg.max_images})")

        blank = [str(i) for i, ref in enumerate(request.images) if not ref or not ref.strip()]
        if blank:
            errors.append(f"Empty image reference at position {', '.join(blank)}")

        prompt = (request.prompt or "").strip()
        if not prompt:
            errors.append("Prompt is required")
        elif len(prompt) < cfg.min_prompt_length:
            errors.append(f"Prompt too short: {len(prompt)} characters (min {cfg.min_prompt_length})")
        elif len(prompt) > cfg.max_prompt_length:
            errors.append(f"Prompt too long: {len(prompt)} characters (max {cfg.max_prompt_length})")

        if errors:
            logger.warning("Request rejected: %s", "; ".join(errors))
            raise PreconditionError(errors)

    def evaluate(
        self,
        annotations: Sequence[Annotation],
        synthesis: SynthesisMetadata,
        strict: bool,
        researched: bool = False
    ) -> Candidate:
        """Truncate to the maximum if needed, then score from scratch."""
        annotations, truncated = truncate_to_maximum(annotations, self.config.target_annotations.maximum)
        metrics = self.assessor.assess(annotations, synthesis)
        violations = self.assessor.find_violations(annotations, metrics, strict)
        return Candidate(annotations, synthesis, metrics, violations, truncated, researched)

    async def _run(self, run: RunContext) -> PipelineResult:
        if run.options.rag_enabled:
            await self._retrieve_knowledge(run)
        await self._dispatch(run)
        self._assess_quality(run)
        if run.options.research_enabled and self.research_provider is not None:
            await self._enhance_research(run)
        self._final_validation(run)

        if run.best.violations:
            await self._recover(run)
        if run.best.violations:
            logger.warning("Quality validation failed: %s", "; ".join(run.best.violations))
            return self._result(
                run,
                success=False,
                error="Quality validation failed: " + "; ".join(run.best.violations),
            )

        if run.options.business_impact:
            with self._stage(run, Stage.BUSINESS_IMPACT):
                run.best = run.best._replace(annotations=self.impact_scorer.enrich_all(run.best.annotations))

        return self._result(run, success=True)

    async def _retrieve_knowledge(self, run: RunContext) -> None:
        with self._stage(run, Stage.KNOWLEDGE_RETRIEVAL):
            if self.retriever is None:
                logger.warning("RAG requested but no knowledge retriever is configured")
                run.record_fallback("knowledge_retrieval_unavailable")
                return

            filters = {"limit": self.config.knowledge.retrieval_limit}
            if run.request.context.get("industry"):
                filters["industry"] = run.request.context["industry"]

            timeout = run.deadline.stage_timeout(self.config.budget.retrieval_fraction)
            try:
                candidates = await run_with_timeout(
                    self.retriever.retrieve(run.prompt, filters),
                    timeout=timeout,
                    cancel_event=run.cancel_event,
                )
            except AnalysisCancelled:
                raise
            except Exception as e:
                # Whatever the retriever raises, the run continues without context
                logger.warning(
                    "Knowledge retrieval failed, continuing without context: %s: %s", type(e).__name__, e
                )
                run.record_fallback("knowledge_retrieval_failed")
                return

            run.knowledge = self.context_validator.validate(candidates, run.prompt, run.request.images)
            run.prompt = self.context_validator.build_safe_prompt(run.prompt, run.knowledge)

    async def _dispatch(self, run: RunContext) -> None:
        with self._stage(run, Stage.MODEL_DISPATCH):
            result = await self.orchestrator.orchestrate(
                run.request.images,
                run.prompt,
                context=run.request.context,
                timeout=run.deadline.stage_timeout(self.config.budget.dispatch_fraction),
                cancel_event=run.cancel_event,
            )
            run.annotations = result.annotations
            run.synthesis = result.synthesis
            for provider_id in result.synthesis.fallbacks_triggered:
                run.record_fallback(provider_id)

    def _assess_quality(self, run: RunContext) -> None:
        with self._stage(run, Stage.QUALITY_ASSESSMENT):
            run.metrics = self.assessor.assess(run.annotations, run.synthesis)
            logger.info(
                "Initial quality: overall=%.2f provider=%.2f synthesis=%.2f research=%.2f",
                run.metrics.overall_score, run.metrics.provider_quality,
                run.metrics.synthesis_quality, run.metrics.research_validation
            )

    async def _enhance_research(self, run: RunContext) -> None:
        with self._stage(run, Stage.RESEARCH_ENHANCEMENT):
            timeout = run.deadline.stage_timeout(self.config.budget.research_fraction)
            try:
                run.annotations = await self.research_enhancer.enhance(
                    run.annotations,
                    run.request.prompt,
                    timeout=timeout,
                    cancel_event=run.cancel_event,
                )
                run.research_enhanced = True
            except ResearchError as e:
                logger.warning("Research enhancement failed, keeping original annotations: %s", e)
                run.record_fallback("research_enhancement_failed")

    def _final_validation(self, run: RunContext) -> None:
        with self._stage(run, Stage.FINAL_VALIDATION):
            run.best = self.evaluate(
                run.annotations, run.synthesis, run.options.strict_quality, researched=run.research_enhanced
            )
            if run.best.truncated:
                run.record_fallback("truncated_to_maximum")
            logger.info(
                "Final validation: %d annotations, overall=%.2f, %d violation(s)",
                len(run.best.annotations), run.best.metrics.overall_score, len(run.best.violations)
            )

    async def _recover(self, run: RunContext) -> None:
        """
        Apply at most max_recovery_strategies strategies in order.

        A candidate replaces the current best only if its overall score is
        strictly higher; recovery stops as soon as the best passes.
        """
        with self._stage(run, Stage.QUALITY_RECOVERY):
            for strategy in self.recovery_strategies[:self.config.max_recovery_strategies]:
                if not run.best.violations:
                    break
                check_cancelled(run.cancel_event)
                before = run.best.metrics.overall_score

                if not strategy.applies(self, run):
                    run.recovery_attempts.append(RecoveryAttempt(
                        strategy=strategy.name, attempted=False, score_before=before, note="not applicable"
                    ))
                    continue

                candidate = await strategy.recover(self, run)
                if candidate is None:
                    run.recovery_attempts.append(RecoveryAttempt(
                        strategy=strategy.name, attempted=True, score_before=before, note="no result"
                    ))
                    continue

                after = candidate.metrics.overall_score
                accepted = after > before
                if accepted:
                    run.best = candidate
                    if candidate.truncated:
                        run.record_fallback("truncated_to_maximum")
                logger.info(
                    "Recovery %s: %.2f -> %.2f (%s)",
                    strategy.name, before, after, "accepted" if accepted else "discarded"
                )
                run.recovery_attempts.append(RecoveryAttempt(
                    strategy=strategy.name,
                    attempted=True,
                    accepted=accepted,
                    score_before=before,
                    score_after=after,
                    note="" if accepted else "score did not improve",
                ))

    @contextmanager
    def _stage(self, run: RunContext, stage: Stage) -> Iterator[None]:
        run.stages.append(stage.value)
        check_cancelled(run.cancel_event)
        if run.deadline.expired:
            raise PipelineTimeoutError(
                f"Pipeline budget of {run.deadline.total_seconds:.0f}s exhausted before {stage.value}"
            )
        logger.debug("Entering stage %s", stage.value)
        timer = Timer(stage.value)
        try:
            with timer:
                yield
        finally:
            run.stage_timings[stage.value] = round(timer.elapsed_s, 4)

    def _result(self, run: RunContext, success: bool, error: Optional[str] = None) -> PipelineResult:
        best = run.best
        return PipelineResult(
            success=success,
            annotations=best.annotations if best else [],
            quality_metrics=best.metrics if best else QualityMetrics.empty(),
            synthesis_metadata=best.synthesis if best else run.synthesis,
            processing_stages=run.stages,
            fallbacks_used=run.fallbacks,
            violations=best.violations if best else [],
            recovery_attempts=run.recovery_attempts,
            knowledge=run.knowledge,
            research_enhanced=best.researched if best else False,
            stage_timings=run.stage_timings,
            processing_time_seconds=round(run.deadline.elapsed(), 4),
            error=error,
        )


def truncate_to_maximum(annotations: Sequence[Annotation], maximum: int) -> tuple[list[Annotation], bool]:
    """
    Keep the ``maximum`` most severe annotations.

    Within a severity the original order is preserved, and the kept
    annotations stay in their original relative order.
    """
    if len(annotations) <= maximum:
        return list(annotations), False
    ranked = sorted(range(len(annotations)), key=lambda i: -SEVERITY_RANK[annotations[i].severity])
    keep = set(ranked[:maximum])
    return [a for i, a in enumerate(annotations) if i in keep], True
