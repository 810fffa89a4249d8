"""
Research Enhancement

Backs annotations with evidence. Two sources:

- validated knowledge-base entries already retrieved for the request
  (pure, no provider calls; used by the enhancement-only recovery)
- a ResearchProvider queried once per distinct category, concurrently

Enhanced annotations are new records; the originals are never mutated.
"""

import asyncio
import re
from typing import Optional, Sequence

from .errors import ResearchError
from .log import get_logger
from .models import Annotation, ResearchFinding, ValidatedKnowledge
from .timing import run_with_timeout

logger = get_logger("ux_critique.research")

RESEARCH_INDICATORS = {
    "strong": (
        "research shows", "studies indicate", "according to research", "data suggests",
        "peer-reviewed", "empirical evidence", "evidence-based", "research demonstrates",
        "study findings", "evidence supports",
    ),
    "industry": (
        "industry standard", "nielsen", "baymard institute", "usability study",
        "user testing", "a/b testing", "industry benchmark", "wcag",
    ),
    "authority": (
        "according to experts", "research consensus", "established practice",
        "proven approach", "documented evidence",
    ),
}

MAX_SOURCES_PER_ANNOTATION = 3
_WORD_RE = re.compile(r"[a-z0-9]+")


def detect_indicators(text: str) -> list[str]:
    """Research phrases found in the text, in declaration order."""
    lowered = text.lower()
    return [
        phrase
        for group in RESEARCH_INDICATORS.values()
        for phrase in group
        if phrase in lowered
    ]


def has_research_indicator(text: str) -> bool:
    return bool(detect_indicators(text))


class ResearchEnhancer:
    """
    Attaches research backing to annotations.

    Example:
        enhancer = ResearchEnhancer(PerplexityProvider(api_key))
        enhanced = await enhancer.enhance(annotations, prompt, timeout=20)
    """

    def __init__(self, provider=None, max_queries: int = 3):
        self.provider = provider
        self.max_queries = max_queries

    def attach_knowledge_sources(
        self,
        annotations: Sequence[Annotation],
        knowledge: Sequence[ValidatedKnowledge] = ()
    ) -> list[Annotation]:
        """
        Mark annotations backed by validated knowledge or research phrasing.

        An entry backs an annotation when it shares the annotation's
        category or at least two keywords with its feedback.
        """
        enhanced = []
        for annotation in annotations:
            feedback_words = _keywords(annotation.feedback)
            sources = [
                entry.source or entry.title
                for entry in knowledge
                if entry.category == annotation.category
                or len(feedback_words & _keywords(f"{entry.title} {entry.content}")) >= 2
            ]
            enhanced.append(self._with_sources(annotation, sources))
        return enhanced

    async def enhance(
        self,
        annotations: Sequence[Annotation],
        prompt: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> list[Annotation]:
        """
        Query the research provider per category and attach citations.

        Lookups are independent and read-only, so they run concurrently
        under one combined timeout.

        Raises:
            ResearchError: If no provider is configured, every lookup failed,
                or the combined timeout expired
        """
        if self.provider is None:
            raise ResearchError("No research provider configured")

        categories = list(dict.fromkeys(a.category for a in annotations))[:self.max_queries]
        if not categories:
            return list(annotations)

        queries = {c: research_query(c, prompt) for c in categories}
        try:
            results = await run_with_timeout(
                asyncio.gather(
                    *(self.provider.research(q) for q in queries.values()),
                    return_exceptions=True,
                ),
                timeout=timeout,
                cancel_event=cancel_event,
            )
        except asyncio.TimeoutError as e:
            raise ResearchError(f"Research lookups timed out after {timeout:.1f}s") from e

        findings: dict[str, ResearchFinding] = {}
        for category, result in zip(queries, results):
            if isinstance(result, ResearchFinding):
                findings[category] = result
            else:
                logger.warning("Research lookup for %s failed: %s", category, result)

        if not findings:
            raise ResearchError("All research lookups failed")

        enhanced = []
        for annotation in annotations:
            finding = findings.get(annotation.category)
            sources = list(finding.sources) if finding else []
            enhanced.append(self._with_sources(annotation, sources))

        logger.info(
            "Research enhancement: %d/%d categories researched, %d annotations backed",
            len(findings), len(categories), sum(1 for a in enhanced if a.research_validated)
        )
        return enhanced

    @staticmethod
    def _with_sources(annotation: Annotation, sources: Sequence[str]) -> Annotation:
        merged = list(dict.fromkeys([*annotation.research_sources, *sources]))[:MAX_SOURCES_PER_ANNOTATION]
        validated = bool(merged) or has_research_indicator(annotation.feedback)
        if merged == annotation.research_sources and bool(annotation.research_validated) == validated:
            return annotation
        return annotation.model_copy(update={
            "research_sources": merged,
            "research_validated": validated or annotation.research_validated,
        })


def research_query(category: str, prompt: str) -> str:
    return f"UX research and industry benchmarks for {category} issues in: {prompt[:200]}"


def _keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 3}
