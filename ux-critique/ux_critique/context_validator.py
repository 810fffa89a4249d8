"""
RAG Context Validation

Turns raw knowledge candidates into a small, high-confidence set that is
safe to inject into a provider prompt, and estimates how much
hallucination risk the injected context carries.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from .config import KnowledgeConfig
from .log import get_logger
from .models import KnowledgeCandidate, KnowledgeValidation, RagImpactAnalysis, ValidatedKnowledge

logger = get_logger("ux_critique.context_validator")

# Absolutist advice that pushes models into generic, off-image findings
PROBLEMATIC_PHRASES = (
    "always add", "never use", "must have", "should always",
    "all websites need", "every design should",
)

SPECIFIC_TERMS = (
    "pixel", "color:", "font-size", "margin", "padding", "border",
    "accessibility", "contrast ratio", "wcag", "button text",
    "navigation", "form field", "error message",
)

GENERIC_TERMS = (
    "good practice", "best way", "should consider", "it is important",
    "users like", "generally", "usually", "often",
)

CONFLICT_INDICATORS = (
    "however", "but", "although", "nevertheless", "on the other hand",
    "contrary to", "despite", "in contrast",
)

_PROBLEMATIC_RE = re.compile("|".join(re.escape(p) for p in PROBLEMATIC_PHRASES), re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z0-9]+")


class ContextValidator:
    """
    Filters retrieved knowledge before it reaches a provider.

    Policy:
    - keep candidates whose similarity reaches the relevance floor
    - drop candidates flagged as unrelated to the images (when required)
    - truncate content and strip absolutist phrasing
    - keep at most ``max_entries``, highest similarity first

    Example:
        validator = ContextValidator(KnowledgeConfig())
        validation = validator.validate(candidates, prompt, images)
        prompt = validator.build_safe_prompt(prompt, validation)
    """

    def __init__(self, config: Optional[KnowledgeConfig] = None):
        self.config = config or KnowledgeConfig()

    def validate(
        self,
        candidates: Sequence[KnowledgeCandidate],
        prompt: str,
        images: Sequence[str] = (),
        now: Optional[datetime] = None
    ) -> KnowledgeValidation:
        """
        Filter candidates into a disjoint ValidatedKnowledge set.

        Args:
            candidates: Retrieved entries, any order
            prompt: Analysis prompt, used for alignment scoring
            images: Image references of the request
            now: Reference time for freshness scoring

        Returns:
            KnowledgeValidation with kept entries and impact analysis
        """
        cfg = self.config
        relevance_scores: dict[str, float] = {}
        reasons: dict[str, list[str]] = {}
        passed: list[KnowledgeCandidate] = []
        seen: set[str] = set()

        for candidate in candidates:
            relevance_scores[candidate.id] = candidate.similarity
            rejected = []
            if candidate.id in seen:
                rejected.append("Duplicate entry")
            if candidate.similarity < cfg.min_relevance:
                rejected.append(
                    f"Similarity {candidate.similarity:.2f} below relevance floor {cfg.min_relevance:.2f}"
                )
            if cfg.require_image_relevance and images and candidate.image_relevant is False:
                rejected.append("Not relevant to the analysed images")

            if rejected:
                reasons.setdefault(candidate.id, []).extend(rejected)
            else:
                seen.add(candidate.id)
                passed.append(candidate)

        passed.sort(key=lambda c: c.similarity, reverse=True)
        kept, overflow = passed[:cfg.max_entries], passed[cfg.max_entries:]
        for candidate in overflow:
            reasons.setdefault(candidate.id, []).append(
                f"Outside the top {cfg.max_entries} entries by similarity"
            )

        entries = [self._to_validated(c) for c in kept]
        filtered_count = len(candidates) - len(entries)
        impact = self.analyze_impact(kept, prompt, filtered_count, now=now)

        validation = KnowledgeValidation(
            entries=entries,
            filtered_count=filtered_count,
            relevance_scores=relevance_scores,
            filtering_reasons=reasons,
            overall_quality=self._overall_quality(entries),
            impact=impact,
        )

        logger.info(
            "Knowledge validated: kept=%d filtered=%d quality=%.2f hallucination_risk=%.2f",
            len(entries), filtered_count, validation.overall_quality, impact.hallucination_risk
        )
        return validation

    def analyze_impact(
        self,
        kept: Sequence[KnowledgeCandidate],
        prompt: str,
        filtered_count: int = 0,
        now: Optional[datetime] = None
    ) -> RagImpactAnalysis:
        """
        Estimate hallucination risk of the injected context.

        Risk grows with knowledge volume, generic or self-contradicting
        content, and with the share of retrieved content that had to be
        filtered out (a noisy retrieval).
        """
        total = len(kept) + filtered_count
        unvalidated_share = filtered_count / total if total else 0.0

        if kept:
            avg_specificity = _mean(specificity(c.content) for c in kept)
            avg_conflict = _mean(conflict_level(c.content) for c in kept)
            content_risk = min(0.3, len(kept) / 50) + (1 - avg_specificity) * 0.4 + avg_conflict * 0.3
            alignment = _mean(prompt_relevance(c.content, prompt) for c in kept)
            avg_freshness = _mean(freshness(c.created_at, now) for c in kept)
            quality = avg_specificity * 0.6 + avg_freshness * 0.4
        else:
            content_risk = alignment = quality = 0.0

        risk = min(1.0, content_risk * 0.7 + unvalidated_share * 0.3)

        recommendations = []
        if risk > 0.7:
            recommendations.append("High hallucination risk detected - reduce knowledge volume")
        if kept and alignment < 0.5:
            recommendations.append("Poor context alignment - filter for more relevant knowledge")
        if kept and quality < 0.6:
            recommendations.append("Low knowledge quality - update knowledge base")
        if unvalidated_share > 0.5:
            recommendations.append("Most retrieved knowledge was filtered out - review retrieval queries")
        if not recommendations:
            recommendations.append("RAG content quality is acceptable")

        return RagImpactAnalysis(
            hallucination_risk=round(risk, 4),
            context_alignment=round(min(1.0, alignment), 4),
            knowledge_quality=round(min(1.0, quality), 4),
            recommendations=recommendations,
        )

    def build_safe_prompt(self, prompt: str, validation: Optional[KnowledgeValidation]) -> str:
        """
        Append validated context with hallucination safeguards.

        Returns the prompt unchanged when nothing was validated.
        """
        if validation is None or not validation.entries:
            return prompt

        context_section = "\n".join(
            f"{i}. {entry.title}\n   {entry.content[:300]}\n"
            for i, entry in enumerate(validation.entries, 1)
        )

        return f"""{prompt}

=== RESEARCH CONTEXT SAFETY INSTRUCTIONS ===
1. CONTEXT AS SUPPORT: Use research context as supporting evidence, not primary guidance.
2. VISUAL PRIORITY: What you observe in the images takes precedence over research context.
3. QUALITY SCORE: This research context has a quality score of {round(validation.overall_quality * 100)}%.
4. FILTERED CONTENT: {validation.filtered_count} potentially problematic entries were filtered out.
5. NO OVER-RELIANCE: Do not let research context override your visual analysis.

=== VALIDATED RESEARCH CONTEXT ===
{context_section}
=== CITATION REQUIREMENTS ===
1. CITE SOURCES: When referencing research context, mention the source.
2. DISTINGUISH SOURCES: Clearly separate observed issues from research-backed recommendations.
3. EVIDENCE HIERARCHY: Image observation > Research context > General best practices.

IMPORTANT: Use the research context as supporting evidence only. Focus primarily on what you can observe in the provided images."""

    def _to_validated(self, candidate: KnowledgeCandidate) -> ValidatedKnowledge:
        content = candidate.content
        if self.config.enable_content_filtering:
            content = re.sub(r"\s{2,}", " ", _PROBLEMATIC_RE.sub("", content)).strip()
            limit = self.config.max_content_length
            if len(content) > limit:
                # Ellipsis counts toward the limit
                content = content[:limit - 3].rstrip() + "..."

        return ValidatedKnowledge(
            id=candidate.id,
            title=candidate.title,
            content=content,
            category=candidate.category,
            relevance=candidate.similarity,
            industry=candidate.industry,
            source=candidate.source,
        )

    def _overall_quality(self, entries: Sequence[ValidatedKnowledge]) -> float:
        if not entries:
            return 0.0
        avg_relevance = _mean(e.relevance for e in entries)
        categories = {e.category for e in entries}
        sources = {e.source for e in entries if e.source}
        diversity = min(1.0, (len(categories) + len(sources)) / 10)
        coverage = min(1.0, len(entries) / self.config.max_entries)
        return round(avg_relevance * 0.5 + diversity * 0.3 + coverage * 0.2, 4)


def specificity(content: str) -> float:
    """0-1: concrete design vocabulary versus generic advice."""
    text = content.lower()
    specific = sum(1 for term in SPECIFIC_TERMS if term in text)
    generic = sum(1 for term in GENERIC_TERMS if term in text)
    return min(1.0, max(0.0, (specific - generic * 0.5) / 5))


def conflict_level(content: str) -> float:
    words = set(_WORD_RE.findall(content.lower()))
    text = content.lower()
    count = sum(
        1 for indicator in CONFLICT_INDICATORS
        if (indicator in words if " " not in indicator else indicator in text)
    )
    return min(1.0, count / 3)


def prompt_relevance(content: str, prompt: str) -> float:
    prompt_words = _WORD_RE.findall(prompt.lower())
    prompt_set = set(prompt_words)
    common = {w for w in _WORD_RE.findall(content.lower()) if len(w) > 3 and w in prompt_set}
    return min(1.0, len(common) / max(10, len(prompt_words) * 0.3))


def freshness(created_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    if created_at is None:
        return 0.5
    if now is None:
        now = datetime.now(timezone.utc) if created_at.tzinfo else datetime.now()
    elif (now.tzinfo is None) != (created_at.tzinfo is None):
        now = now.replace(tzinfo=created_at.tzinfo)
    age_days = (now - created_at).total_seconds() / 86400
    if age_days <= 30:
        return 1.0
    if age_days <= 90:
        return 0.8
    if age_days <= 365:
        return 0.6
    if age_days <= 730:
        return 0.4
    return 0.2


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0
