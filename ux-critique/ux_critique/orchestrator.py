"""
Multi-Model Orchestration

Dispatches an analysis over the prioritised provider chain:

1. The primary provider is always tried first.
2. If it is usable, the remaining providers run concurrently as
   supplementary contributors; their failures are only recorded.
3. If it is not, the remaining providers are tried one by one in
   priority order until one is usable.

With force_primary only the preferred provider is called: no
supplementary contributors and no escalation.

A provider is unusable when it times out, raises, returns a payload that
fails validation, returns no annotations, or reports a (clamped)
confidence below its threshold.
"""

import asyncio
from difflib import SequenceMatcher
from typing import Optional, Sequence

from .config import PipelineConfig, ProviderSpec
from .errors import (
    AllProvidersFailedError,
    AnalysisCancelled,
    LowConfidenceError,
    MalformedResponseError,
    ProviderError,
)
from .log import get_logger
from .models import SEVERITY_RANK, Annotation, OrchestrationResult, ProviderResponse, SynthesisMetadata
from .providers import WeightedProvider
from .timing import Deadline, Timer, check_cancelled, run_with_timeout

logger = get_logger("ux_critique.orchestrator")

POSITION_TOLERANCE = 10.0
FEEDBACK_SIMILARITY = 0.8


class ModelOrchestrator:
    """
    Weighted dispatch with deterministic escalation.

    Example:
        orchestrator = ModelOrchestrator(build_provider_chain(settings, config), config)
        result = await orchestrator.orchestrate(images, prompt, timeout=60)
        print(result.synthesis.primary_model, result.synthesis.fallbacks_triggered)
    """

    def __init__(self, providers: Sequence[WeightedProvider], config: PipelineConfig):
        self.providers = list(providers)
        self.config = config

    async def orchestrate(
        self,
        images: Sequence[str],
        prompt: str,
        *,
        context: Optional[dict] = None,
        force_primary: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> OrchestrationResult:
        """
        Run the provider chain and merge what it produced.

        Args:
            images: Image references, passed to every provider unchanged
            prompt: Final analysis prompt (knowledge already injected)
            context: Extra dispatch context forwarded to providers
            force_primary: Call the preferred provider exclusively
            timeout: Combined time budget for the whole dispatch
            cancel_event: Set by the caller to abort in-flight calls

        Raises:
            AllProvidersFailedError: If no provider produced a usable response
            AnalysisCancelled: If cancel_event was set
        """
        if not self.providers:
            raise AllProvidersFailedError({})

        deadline = Deadline(timeout) if timeout is not None else None
        errors: dict[str, str] = {}
        fallbacks: list[str] = []
        if force_primary:
            primary, rest = self._preferred(), []
        else:
            primary, *rest = self.providers

        response = await self._attempt(primary, images, prompt, context, "primary", deadline, cancel_event, errors)
        responses: list[ProviderResponse] = []

        if response is not None:
            responses.append(response)
            if rest:
                responses.extend(
                    await self._run_supplementary(rest, images, prompt, context, deadline, cancel_event, errors)
                )
        elif force_primary:
            logger.warning("Primary provider %s failed and escalation is disabled", primary.id)
            raise AllProvidersFailedError(errors)
        else:
            for candidate in rest:
                fallbacks.append(candidate.id)
                logger.warning("Escalating to %s after: %s", candidate.id, "; ".join(errors.values()))
                response = await self._attempt(
                    candidate, images, prompt, context, "fallback", deadline, cancel_event, errors
                )
                if response is not None:
                    responses.append(response)
                    break
            else:
                raise AllProvidersFailedError(errors)

        annotations = merge_annotations(responses)
        weights = self._renormalized_weights(responses)
        confidence = sum(weights[r.provider] * r.confidence for r in responses)

        synthesis = SynthesisMetadata(
            primary_model=responses[0].provider,
            confidence_score=round(min(1.0, confidence), 6),
            fallbacks_triggered=fallbacks,
            total_models_used=len(responses),
            weights=weights,
            provider_errors=errors,
        )

        logger.info(
            "Dispatch complete: primary=%s models=%d annotations=%d confidence=%.2f fallbacks=%s",
            synthesis.primary_model, synthesis.total_models_used, len(annotations),
            synthesis.confidence_score, fallbacks or "none"
        )
        return OrchestrationResult(annotations=annotations, synthesis=synthesis, responses=responses)

    def _preferred(self) -> WeightedProvider:
        preferred = self.config.preferred_provider
        for weighted in self.providers:
            if weighted.id == preferred:
                return weighted
        raise AllProvidersFailedError({preferred: "preferred provider is not configured"})

    async def _run_supplementary(
        self,
        providers: Sequence[WeightedProvider],
        images: Sequence[str],
        prompt: str,
        context: Optional[dict],
        deadline: Optional[Deadline],
        cancel_event: Optional[asyncio.Event],
        errors: dict[str, str]
    ) -> list[ProviderResponse]:
        results = await asyncio.gather(
            *(
                self._attempt(p, images, prompt, context, "supplementary", deadline, cancel_event, errors)
                for p in providers
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return [r for r in results if r is not None]

    async def _attempt(
        self,
        weighted: WeightedProvider,
        images: Sequence[str],
        prompt: str,
        context: Optional[dict],
        role: str,
        deadline: Optional[Deadline],
        cancel_event: Optional[asyncio.Event],
        errors: dict[str, str]
    ) -> Optional[ProviderResponse]:
        """One provider call. Failures are recorded in ``errors``, never raised."""
        check_cancelled(cancel_event)

        call_timeout = weighted.spec.timeout_seconds
        if deadline is not None:
            call_timeout = min(call_timeout, deadline.remaining())
            if call_timeout <= 0:
                errors[weighted.id] = "dispatch time budget exhausted"
                return None

        try:
            async with Timer(f"{weighted.id} analysis"):
                response = await run_with_timeout(
                    weighted.provider.analyze(images, prompt, {**(context or {}), "role": role}),
                    timeout=call_timeout,
                    cancel_event=cancel_event,
                )
            return self._accept(weighted.spec, response)
        except AnalysisCancelled:
            raise
        except asyncio.TimeoutError:
            errors[weighted.id] = f"timed out after {call_timeout:.1f}s"
        except ProviderError as e:
            errors[weighted.id] = str(e)
        except Exception as e:
            errors[weighted.id] = f"{type(e).__name__}: {e}"

        logger.warning("Provider %s (%s) failed: %s", weighted.id, role, errors[weighted.id])
        return None

    @staticmethod
    def _accept(spec: ProviderSpec, response: ProviderResponse) -> ProviderResponse:
        """
        Gate a response and stamp provenance.

        Raises:
            MalformedResponseError: If the response has no annotations
            LowConfidenceError: If confidence is below the provider's threshold
        """
        if not isinstance(response, ProviderResponse):
            raise MalformedResponseError(f"Unexpected response type {type(response).__name__}", spec.id)
        if not response.annotations:
            raise MalformedResponseError("Empty annotation list", spec.id)
        if response.confidence < spec.confidence_threshold:
            raise LowConfidenceError(
                f"Confidence {response.confidence:.2f} below threshold {spec.confidence_threshold:.2f}",
                spec.id,
            )

        annotations = [
            a if a.source_provider == spec.id else a.model_copy(update={"source_provider": spec.id})
            for a in response.annotations
        ]
        return response.model_copy(update={"provider": spec.id, "annotations": annotations})

    def _renormalized_weights(self, responses: Sequence[ProviderResponse]) -> dict[str, float]:
        specs = {p.id: p.spec for p in self.providers}
        raw = {r.provider: specs[r.provider].weight for r in responses}
        total = sum(raw.values())
        return {name: round(weight / total, 6) for name, weight in raw.items()}


def merge_annotations(responses: Sequence[ProviderResponse]) -> list[Annotation]:
    """
    Merge provider outputs, highest priority first.

    An annotation that duplicates one from an earlier provider folds into
    that record: higher severity wins, research sources are unioned and
    the provider is appended to ``merged_from``. Annotations from the same
    provider are never merged with each other.
    """
    merged: list[Annotation] = []
    used_ids: set[str] = set()

    for response in responses:
        earlier = len(merged)
        for annotation in response.annotations:
            match = next(
                (i for i in range(earlier) if is_duplicate(merged[i], annotation)),
                None,
            )
            if match is not None:
                merged[match] = combine(merged[match], annotation, response.provider)
                continue

            new_id = annotation.id
            if new_id in used_ids:
                new_id = f"{response.provider}-{annotation.id}"
                suffix = 2
                while new_id in used_ids:
                    new_id = f"{response.provider}-{annotation.id}-{suffix}"
                    suffix += 1
                annotation = annotation.model_copy(update={"id": new_id})
            used_ids.add(new_id)
            merged.append(annotation)

    return merged


def is_duplicate(a: Annotation, b: Annotation) -> bool:
    if a.coordinates and b.coordinates:
        ca, cb = a.coordinates, b.coordinates
        if (
            ca.image_index == cb.image_index and
            abs(ca.x - cb.x) <= POSITION_TOLERANCE and
            abs(ca.y - cb.y) <= POSITION_TOLERANCE
        ):
            return True
    if a.category != b.category:
        return False
    ratio = SequenceMatcher(None, a.feedback.lower(), b.feedback.lower()).ratio()
    return ratio >= FEEDBACK_SIMILARITY


def combine(kept: Annotation, other: Annotation, provider: str) -> Annotation:
    severity = max(kept.severity, other.severity, key=SEVERITY_RANK.__getitem__)
    sources = list(dict.fromkeys([*kept.research_sources, *other.research_sources]))
    merged_from = kept.merged_from if provider in kept.merged_from else [*kept.merged_from, provider]

    research_validated = kept.research_validated
    if other.research_validated:
        research_validated = True

    return kept.model_copy(update={
        "severity": severity,
        "research_sources": sources,
        "merged_from": merged_from,
        "research_validated": research_validated,
    })
