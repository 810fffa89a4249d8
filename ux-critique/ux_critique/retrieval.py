"""
Knowledge Retrieval

The retrieval collaborator is external (a vector store in production);
the pipeline only depends on the KnowledgeRetriever contract. A
JSON-file retriever is included for the CLI and for offline runs.
"""

import json
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import RetrievalError
from .log import get_logger
from .models import KnowledgeCandidate

logger = get_logger("ux_critique.retrieval")

_WORD_RE = re.compile(r"[a-z0-9]+")


class KnowledgeEntry(BaseModel):
    """One entry of a JSON knowledge file."""

    id: str = Field(min_length=1)
    title: Optional[str] = None
    content: str = Field(min_length=1)
    category: str = "ux"
    industry: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    source: Optional[str] = None
    image_relevant: Optional[bool] = None
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def numeric_id(cls, v: Union[str, int]) -> str:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class KnowledgeRetriever(ABC):
    """Contract for knowledge-base lookups."""

    @abstractmethod
    async def retrieve(
        self,
        query_text: str,
        filters: Optional[dict] = None
    ) -> list[KnowledgeCandidate]:
        """
        Return candidates ranked by descending similarity.

        Args:
            query_text: Usually the analysis prompt
            filters: Optional keys: category, industry, limit

        Raises:
            RetrievalError: If the store cannot be queried
        """


class JsonKnowledgeRetriever(KnowledgeRetriever):
    """
    Keyword-overlap retriever over a JSON knowledge file.

    The file holds either a list of entries or {"entries": [...]}, each
    with at least id and content; invalid entries are skipped. Similarity is the share of
    query keywords found in the entry's title, content and tags.

    Example:
        retriever = JsonKnowledgeRetriever(Path("knowledge.json"))
        candidates = await retriever.retrieve("checkout form errors", {"limit": 10})
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> list[KnowledgeEntry]:
        try:
            doc: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RetrievalError(f"Cannot read knowledge file {path}: {e}") from e
        raw_entries = doc.get("entries", []) if isinstance(doc, dict) else doc
        if not isinstance(raw_entries, list):
            raise RetrievalError(f"Knowledge file {path} has no entry list")

        entries = []
        for position, raw in enumerate(raw_entries):
            try:
                entries.append(KnowledgeEntry.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping knowledge entry %d in %s: %d invalid field(s)", position, path, e.error_count()
                )
        return entries

    async def retrieve(
        self,
        query_text: str,
        filters: Optional[dict] = None
    ) -> list[KnowledgeCandidate]:
        filters = filters or {}
        query_words = _keywords(query_text)
        candidates = []

        for entry in self.entries:
            if filters.get("category") and entry.category != filters["category"]:
                continue
            if filters.get("industry") and entry.industry not in (None, filters["industry"]):
                continue

            entry_words = _keywords(" ".join([entry.title or "", entry.content, *entry.tags]))
            similarity = len(query_words & entry_words) / len(query_words) if query_words else 0.0

            candidates.append(KnowledgeCandidate(
                id=entry.id,
                title=entry.title or entry.id,
                content=entry.content,
                category=entry.category,
                similarity=round(min(1.0, similarity), 4),
                industry=entry.industry,
                source=entry.source,
                image_relevant=entry.image_relevant,
                created_at=entry.created_at,
            ))

        candidates.sort(key=lambda c: c.similarity, reverse=True)
        limit = filters.get("limit")
        if limit:
            candidates = candidates[:limit]

        logger.debug("Retrieved %d knowledge candidates from %s", len(candidates), self.path)
        return candidates


def _keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 3}
