"""
End-to-end tests for PipelineController with scripted providers.
"""

import asyncio
import json

import pytest

from conftest import (
    FakeProvider,
    FakeResearchProvider,
    FakeRetriever,
    make_annotation,
    make_annotations,
    make_candidates,
)
from ux_critique.config import BudgetConfig, KnowledgeConfig
from ux_critique.errors import AnalysisCancelled, PreconditionError, ProviderTimeoutError, RetrievalError
from ux_critique.models import AnalysisRequest, PipelineOptions
from ux_critique.pipeline import (
    KnowledgeEnhancementPass,
    PipelineController,
    RecoveryStrategy,
    Stage,
    truncate_to_maximum,
)
from ux_critique.retrieval import JsonKnowledgeRetriever

IMAGES = ("data:image/png;base64,iVBORw0KGgo=",)
PROMPT = "Review the checkout page for conversion and accessibility problems"


def execute(controller, request=None, options=None, **kwargs):
    request = request or AnalysisRequest(images=IMAGES, prompt=PROMPT)
    return asyncio.run(controller.execute_pipeline(request, options, **kwargs))


def healthy_providers(count=16):
    return [
        FakeProvider("anthropic", make_annotations(count, "c")),
        FakeProvider("openai", make_annotations(count, "g")),
        FakeProvider("local", make_annotations(count, "l")),
    ]


class TestScenarios:

    def test_all_providers_succeed(self, fast_config, chain):
        controller = PipelineController(fast_config, chain(*healthy_providers()))
        result = execute(controller)

        assert result.success is True
        assert result.quality_metrics.professional_standard is True
        assert result.synthesis_metadata.fallbacks_triggered == []
        assert result.synthesis_metadata.total_models_used == 3
        assert result.violations == []
        assert result.error is None
        assert all(a.business_impact is not None for a in result.annotations)
        assert result.processing_stages == [
            "model_dispatch", "quality_assessment", "final_validation", "business_impact",
        ]

    def test_primary_timeout_secondary_below_minimum(self, fast_config, chain):
        providers = [
            FakeProvider("anthropic", error=ProviderTimeoutError("timed out", "anthropic")),
            FakeProvider("openai", make_annotations(10, "g")),
            FakeProvider("local", make_annotations(16, "l")),
        ]
        result = execute(PipelineController(fast_config, chain(*providers)))

        assert result.success is False
        assert "annotation count 10 < minimum 12" in result.violations
        assert "annotation count 10 < minimum 12" in result.error
        assert result.fallbacks_used == ["openai"]
        assert [a.strategy for a in result.recovery_attempts] == ["force_primary_rerun", "knowledge_enhancement"]
        assert result.recovery_attempts[0].note == "no result"
        assert result.recovery_attempts[1].attempted is True
        assert result.processing_stages[-1] == "quality_recovery"
        assert len(result.annotations) == 10

    def test_rag_knowledge_filtered_and_capped(self, fast_config, chain):
        retriever = FakeRetriever(make_candidates([0.9] * 9 + [0.2, 0.4, 0.6]))
        controller = PipelineController(fast_config, chain(*healthy_providers()), retriever=retriever)
        result = execute(controller, options=PipelineOptions(rag_enabled=True))

        assert result.processing_stages[0] == "knowledge_retrieval"
        assert len(result.knowledge.entries) == 8
        assert result.knowledge.filtered_count == 4
        assert retriever.queries[0][1]["limit"] == fast_config.knowledge.retrieval_limit

    def test_rag_without_cap_keeps_all_relevant(self, fast_config, chain):
        config = fast_config.model_copy(update={"knowledge": KnowledgeConfig(max_entries=10)})
        retriever = FakeRetriever(make_candidates([0.9] * 9 + [0.2, 0.4, 0.6]))
        primary = FakeProvider("anthropic", make_annotations(16))
        result = execute(
            PipelineController(config, chain(primary), retriever=retriever),
            options=PipelineOptions(rag_enabled=True),
        )

        assert len(result.knowledge.entries) == 9
        assert "VALIDATED RESEARCH CONTEXT" in primary.calls[0]["prompt"]

    def test_empty_prompt_rejected_before_any_call(self, fast_config, chain):
        providers = healthy_providers()
        controller = PipelineController(fast_config, chain(*providers))

        with pytest.raises(PreconditionError):
            execute(controller, AnalysisRequest(images=IMAGES, prompt=""))
        assert all(p.calls == [] for p in providers)


class TestPreconditions:

    def test_all_errors_collected(self, fast_config, chain):
        controller = PipelineController(fast_config, chain(*healthy_providers()))

        with pytest.raises(PreconditionError) as exc_info:
            execute(controller, AnalysisRequest(images=(), prompt="short"))
        assert len(exc_info.value.errors) == 2

    def test_too_many_images(self, fast_config, chain):
        controller = PipelineController(fast_config, chain(*healthy_providers()))

        with pytest.raises(PreconditionError, match="Too many images"):
            execute(controller, AnalysisRequest(images=IMAGES * 11, prompt=PROMPT))

    def test_prompt_too_long(self, fast_config, chain):
        controller = PipelineController(fast_config, chain(*healthy_providers()))

        with pytest.raises(PreconditionError, match="Prompt too long"):
            execute(controller, AnalysisRequest(images=IMAGES, prompt="x" * 2001))

    def test_blank_image_reference(self, fast_config, chain):
        controller = PipelineController(fast_config, chain(*healthy_providers()))

        with pytest.raises(PreconditionError, match="Empty image reference"):
            execute(controller, AnalysisRequest(images=IMAGES + ("  ",), prompt=PROMPT))


class TestBounds:

    def test_truncated_to_maximum(self, fast_config, chain):
        primary = FakeProvider("anthropic", make_annotations(25))
        result = execute(PipelineController(fast_config, chain(primary)))

        assert result.success is True
        assert len(result.annotations) == 19
        assert "truncated_to_maximum" in result.fallbacks_used

    def test_truncation_keeps_most_severe(self):
        annotations = [
            make_annotation("e1", severity="enhancement"),
            make_annotation("c1", severity="critical"),
            make_annotation("s1", severity="suggested"),
            make_annotation("c2", severity="critical"),
            make_annotation("e2", severity="enhancement"),
        ]
        kept, truncated = truncate_to_maximum(annotations, 3)

        assert truncated is True
        assert [a.id for a in kept] == ["c1", "s1", "c2"]

    def test_success_implies_bounds(self, fast_config, chain):
        for count in (11, 12, 16, 19, 22):
            primary = FakeProvider("anthropic", make_annotations(count))
            result = execute(PipelineController(fast_config, chain(primary)))
            if result.success:
                assert 12 <= len(result.annotations) <= 19
                assert result.quality_metrics.overall_score >= 0.75


class TestRecovery:

    def test_force_primary_rerun_is_accepted(self, fast_config, chain):
        anthropic = FakeProvider(
            "anthropic", make_annotations(16), error=ProviderTimeoutError("timed out", "anthropic"), fail_times=1
        )
        openai = FakeProvider("openai", make_annotations(10, "g"))
        result = execute(PipelineController(fast_config, chain(anthropic, openai)))

        assert result.success is True
        assert result.synthesis_metadata.primary_model == "anthropic"
        assert result.recovery_attempts[0].strategy == "force_primary_rerun"
        assert result.recovery_attempts[0].accepted is True
        assert len(result.recovery_attempts) == 1
        assert "business_impact" in result.processing_stages

    def test_force_primary_rerun_leaves_other_providers_alone(self, fast_config, chain):
        anthropic = FakeProvider(
            "anthropic", make_annotations(16), error=ProviderTimeoutError("timed out", "anthropic"), fail_times=1
        )
        openai = FakeProvider("openai", make_annotations(10, "g"))
        local = FakeProvider("local", make_annotations(10, "l"))
        result = execute(PipelineController(fast_config, chain(anthropic, openai, local)))

        assert len(anthropic.calls) == 2
        assert len(openai.calls) == 1
        assert local.calls == []
        assert result.recovery_attempts[0].accepted is True
        assert result.synthesis_metadata.total_models_used == 1
        assert result.synthesis_metadata.fallbacks_triggered == []

    def test_rerun_skipped_when_primary_is_preferred(self, fast_config, chain):
        primary = FakeProvider("anthropic", make_annotations(10))
        result = execute(PipelineController(fast_config, chain(primary)))

        assert result.recovery_attempts[0].attempted is False
        assert len(primary.calls) == 1

    def test_worse_candidate_is_discarded(self, fast_config, chain):
        class Degrade(RecoveryStrategy):
            name = "degrade"

            async def recover(self, controller, run):
                worse = run.best.annotations[:3]
                return controller.evaluate(worse, run.best.synthesis, strict=False)

        primary = FakeProvider("anthropic", make_annotations(10))
        controller = PipelineController(fast_config, chain(primary), recovery_strategies=[Degrade()])
        result = execute(controller)

        assert len(result.annotations) == 10
        assert result.recovery_attempts[0].accepted is False
        assert result.recovery_attempts[0].score_after < result.recovery_attempts[0].score_before

    def test_equal_score_candidate_is_discarded(self, fast_config, chain):
        class Rescore(RecoveryStrategy):
            name = "rescore"

            async def recover(self, controller, run):
                return controller.evaluate(run.best.annotations, run.best.synthesis, strict=False)

        primary = FakeProvider("anthropic", make_annotations(10))
        controller = PipelineController(fast_config, chain(primary), recovery_strategies=[Rescore()])
        result = execute(controller)

        attempt = result.recovery_attempts[0]
        assert attempt.attempted is True
        assert attempt.accepted is False
        assert attempt.score_after == attempt.score_before
        assert attempt.note == "score did not improve"
        assert result.success is False

    def test_knowledge_enhancement_improves_score(self, fast_config, chain):
        # Passing on count, failing on quality: fallback primary with a thin synthesis
        annotations = make_annotations(16)
        anthropic = FakeProvider("anthropic", error=ProviderTimeoutError("timed out", "anthropic"))
        openai = FakeProvider("openai", annotations, confidence=0.95)
        retriever = FakeRetriever(make_candidates([0.95, 0.9, 0.9, 0.9, 0.9]))
        controller = PipelineController(
            fast_config, chain(anthropic, openai), retriever=retriever,
            recovery_strategies=[KnowledgeEnhancementPass()],
        )
        result = execute(controller, options=PipelineOptions(rag_enabled=True))

        attempt = result.recovery_attempts[0]
        assert attempt.accepted is True
        assert attempt.score_after > attempt.score_before
        assert result.quality_metrics.research_validation == 1.0

    def test_at_most_configured_strategies(self, fast_config, chain):
        calls = []

        class Noop(RecoveryStrategy):
            name = "noop"

            async def recover(self, controller, run):
                calls.append(1)
                return None

        config = fast_config.model_copy(update={"max_recovery_strategies": 1})
        primary = FakeProvider("anthropic", make_annotations(10))
        controller = PipelineController(config, chain(primary), recovery_strategies=[Noop(), Noop(), Noop()])
        execute(controller)

        assert len(calls) == 1


class TestStageFallbacks:

    def test_retrieval_failure_continues_without_context(self, fast_config, chain):
        retriever = FakeRetriever(error=RetrievalError("vector store down"))
        primary = FakeProvider("anthropic", make_annotations(16))
        result = execute(
            PipelineController(fast_config, chain(primary), retriever=retriever),
            options=PipelineOptions(rag_enabled=True),
        )

        assert result.success is True
        assert "knowledge_retrieval_failed" in result.fallbacks_used
        assert result.knowledge is None
        assert primary.calls[0]["prompt"] == PROMPT

    def test_missing_retriever(self, fast_config, chain):
        result = execute(
            PipelineController(fast_config, chain(*healthy_providers())),
            options=PipelineOptions(rag_enabled=True),
        )

        assert "knowledge_retrieval_unavailable" in result.fallbacks_used

    def test_unexpected_retriever_error(self, fast_config, chain):
        retriever = FakeRetriever(error=TypeError("sequence item 0: expected str instance, NoneType found"))
        controller = PipelineController(fast_config, chain(*healthy_providers()), retriever=retriever)
        result = execute(controller, options=PipelineOptions(rag_enabled=True))

        assert result.success is True
        assert "knowledge_retrieval_failed" in result.fallbacks_used

    def test_knowledge_file_with_invalid_entries(self, fast_config, chain, tmp_path):
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps([
            {"id": "k1", "title": None, "content": "Checkout forms need inline validation."},
            {"id": "k2", "title": "Tags", "content": "Accessible labels.", "tags": [1, 2]},
            {"id": "k3", "title": "Dates", "content": "Fresh guidance.", "created_at": "last spring"},
            {"id": "k4", "title": "Labels", "content": "Review checkout labels for conversion problems."},
        ]), encoding="utf-8")
        retriever = JsonKnowledgeRetriever(path)
        controller = PipelineController(fast_config, chain(*healthy_providers()), retriever=retriever)
        result = execute(controller, options=PipelineOptions(rag_enabled=True))

        assert [e.id for e in retriever.entries] == ["k1", "k4"]
        assert result.success is True
        assert "knowledge_retrieval_failed" not in result.fallbacks_used
        assert Stage.KNOWLEDGE_RETRIEVAL.value in result.processing_stages

    def test_research_enhancement(self, fast_config, chain):
        research = FakeResearchProvider(sources=["Baymard Institute 2024"])
        controller = PipelineController(fast_config, chain(*healthy_providers()), research_provider=research)
        result = execute(controller, options=PipelineOptions(research_enabled=True))

        assert Stage.RESEARCH_ENHANCEMENT.value in result.processing_stages
        assert result.research_enhanced is True
        # Three lookups cover accessibility, conversion and ux: 10 of 16
        assert result.quality_metrics.research_validation == pytest.approx(10 / 16)

    def test_research_failure_keeps_annotations(self, fast_config, chain):
        research = FakeResearchProvider(fail=True)
        controller = PipelineController(fast_config, chain(*healthy_providers()), research_provider=research)
        result = execute(controller, options=PipelineOptions(research_enabled=True))

        assert result.success is True
        assert "research_enhancement_failed" in result.fallbacks_used
        assert result.research_enhanced is False

    def test_all_providers_failing_is_a_failure_result(self, fast_config, chain):
        providers = [
            FakeProvider(name, error=ProviderTimeoutError("timed out", name))
            for name in ("anthropic", "openai", "local")
        ]
        result = execute(PipelineController(fast_config, chain(*providers)))

        assert result.success is False
        assert result.annotations == []
        assert "All providers failed" in result.error
        assert result.fallbacks_used == ["openai", "local"]

    def test_budget_exhaustion(self, fast_config, chain):
        config = fast_config.model_copy(update={"budget": BudgetConfig(total_seconds=0.1, dispatch_fraction=1.0)})
        providers = [FakeProvider(name, make_annotations(16), delay=0.3) for name in ("anthropic", "openai")]
        result = execute(PipelineController(config, chain(*providers)))

        assert result.success is False
        assert result.error

    def test_business_impact_disabled(self, fast_config, chain):
        result = execute(
            PipelineController(fast_config, chain(*healthy_providers())),
            options=PipelineOptions(business_impact=False),
        )

        assert result.success is True
        assert "business_impact" not in result.processing_stages
        assert all(a.business_impact is None for a in result.annotations)


class TestCancellation:

    def test_cancel_before_start(self, fast_config, chain):
        providers = healthy_providers()
        event = asyncio.Event()
        event.set()

        with pytest.raises(AnalysisCancelled):
            execute(PipelineController(fast_config, chain(*providers)), cancel_event=event)
        assert all(p.calls == [] for p in providers)

    def test_cancel_during_dispatch(self, fast_config, chain):
        async def scenario():
            event = asyncio.Event()
            primary = FakeProvider("anthropic", make_annotations(16), delay=0.3, on_call=event.set)
            controller = PipelineController(fast_config, chain(primary))
            request = AnalysisRequest(images=IMAGES, prompt=PROMPT)
            with pytest.raises(AnalysisCancelled):
                await controller.execute_pipeline(request, cancel_event=event)

        asyncio.run(scenario())
