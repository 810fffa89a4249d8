"""
Shared fixtures and scripted fakes.

All tests are:
- Fast (no network, no browser)
- Deterministic (providers, retriever and research are scripted)
"""

import asyncio
from typing import Optional, Sequence

import pytest

from ux_critique.config import PipelineConfig, ProviderSpec
from ux_critique.models import (
    Annotation,
    Coordinates,
    KnowledgeCandidate,
    ProviderResponse,
    ResearchFinding,
)
from ux_critique.errors import ResearchError
from ux_critique.providers import WeightedProvider
from ux_critique.providers.base import AnalysisProvider, ResearchProvider
from ux_critique.retrieval import KnowledgeRetriever

CATEGORIES = ["accessibility", "conversion", "ux", "visual", "brand"]
SEVERITIES = ["critical", "suggested", "enhancement"]

LONG_FEEDBACK = (
    "The primary call to action competes with three secondary buttons of equal visual weight, "
    "so first-time visitors hesitate before committing. Reduce the secondary actions to text links "
    "and give the main button the brand accent colour."
)


def make_annotation(
    id: str = "a-1",
    category: str = "ux",
    severity: str = "suggested",
    feedback: Optional[str] = None,
    x: Optional[float] = None,
    y: Optional[float] = None,
    **kwargs
) -> Annotation:
    coordinates = Coordinates(x=x, y=y) if x is not None and y is not None else None
    return Annotation(
        id=id,
        feedback=feedback or LONG_FEEDBACK,
        category=category,
        severity=severity,
        coordinates=coordinates,
        **kwargs
    )


def make_annotations(n: int, prefix: str = "a", **kwargs) -> list[Annotation]:
    """
    n well-formed annotations on a fixed grid, cycling categories and
    severities. Two providers built with this helper report the same
    positions, so their outputs merge one-to-one.
    """
    return [
        make_annotation(
            id=f"{prefix}-{i + 1}",
            category=CATEGORIES[i % len(CATEGORIES)],
            severity=SEVERITIES[i % len(SEVERITIES)],
            feedback=f"{LONG_FEEDBACK} Finding {i + 1}.",
            x=(i % 4) * 25 + 5,
            y=((i // 4) * 20 + 5) % 100,
            **kwargs
        )
        for i in range(n)
    ]


class FakeProvider(AnalysisProvider):
    """
    Scripted analysis provider.

    The first ``fail_times`` calls raise ``error``; later calls return
    the configured annotations and confidence.
    """

    def __init__(
        self,
        name: str,
        annotations: Sequence[Annotation] = (),
        confidence: float = 0.9,
        error: Optional[Exception] = None,
        fail_times: int = 10**6,
        delay: float = 0.0,
        on_call=None
    ):
        self._name = name
        self.annotations = list(annotations)
        self.confidence = confidence
        self.error = error
        self.fail_times = fail_times if error is not None else 0
        self.delay = delay
        self.on_call = on_call
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    async def analyze(self, images, prompt, context=None) -> ProviderResponse:
        self.calls.append({"images": list(images), "prompt": prompt, "context": dict(context or {})})
        if self.on_call:
            self.on_call()
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.fail_times:
            raise self.error
        return ProviderResponse(provider=self._name, annotations=self.annotations, confidence=self.confidence)


class FakeRetriever(KnowledgeRetriever):
    def __init__(self, candidates: Sequence[KnowledgeCandidate] = (), error: Optional[Exception] = None):
        self.candidates = list(candidates)
        self.error = error
        self.queries: list[tuple[str, dict]] = []

    async def retrieve(self, query_text, filters=None):
        self.queries.append((query_text, dict(filters or {})))
        if self.error:
            raise self.error
        return sorted(self.candidates, key=lambda c: c.similarity, reverse=True)


class FakeResearchProvider(ResearchProvider):
    def __init__(self, sources: Sequence[str] = ("Baymard Institute 2024",), fail: bool = False):
        self.sources = list(sources)
        self.fail = fail
        self.queries: list[str] = []

    @property
    def name(self) -> str:
        return "research"

    def is_available(self) -> bool:
        return True

    async def research(self, query: str) -> ResearchFinding:
        self.queries.append(query)
        if self.fail:
            raise ResearchError("research service unavailable")
        return ResearchFinding(query=query, content="Research shows clear labels help.", sources=self.sources)


def make_candidates(similarities: Sequence[float], **kwargs) -> list[KnowledgeCandidate]:
    return [
        KnowledgeCandidate(
            id=f"kb-{i + 1}",
            title=f"Checkout guideline {i + 1}",
            content="Form field error message placement next to the input reduces checkout abandonment.",
            category=CATEGORIES[i % len(CATEGORIES)],
            similarity=s,
            source=f"Guide {i + 1}",
            **kwargs
        )
        for i, s in enumerate(similarities)
    ]


@pytest.fixture
def fast_config():
    """Default thresholds with short provider timeouts."""
    return PipelineConfig(providers=[
        ProviderSpec(id="anthropic", weight=0.70, confidence_threshold=0.85, timeout_seconds=0.5),
        ProviderSpec(id="openai", weight=0.20, confidence_threshold=0.75, timeout_seconds=0.5),
        ProviderSpec(id="local", weight=0.10, confidence_threshold=0.70, timeout_seconds=0.5),
    ])


@pytest.fixture
def chain(fast_config):
    """Build a WeightedProvider list from fakes, in the given order."""
    def _chain(*providers: FakeProvider) -> list[WeightedProvider]:
        return [WeightedProvider(p, fast_config.provider_spec(p.name)) for p in providers]
    return _chain


@pytest.fixture
def request_prompt():
    return "Review the checkout page for conversion and accessibility problems"
