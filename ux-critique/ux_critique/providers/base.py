"""
Base Provider Interfaces

Abstract base classes for the two kinds of external model:

- AnalysisProvider: vision model that turns screenshots into annotations
- ResearchProvider: search-backed model that returns cited research

Every analysis provider goes through the same strict adapter
(_parse_response): a payload that does not validate against the
Annotation schema is a provider failure, never silently accepted.
"""

import base64
import json
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, NamedTuple, Optional, Sequence

from pydantic import ValidationError

from ..errors import MalformedResponseError, ProviderError
from ..models import Annotation, ProviderResponse, ResearchFinding

PROFESSIONAL_RANGE = (16, 19)
ACCEPTABLE_MINIMUM = 12

SEVERITY_ALIASES = {
    "critical": "critical",
    "high": "critical",
    "suggested": "suggested",
    "medium": "suggested",
    "improvement": "suggested",
    "enhancement": "enhancement",
    "low": "enhancement",
    "positive": "enhancement",
}

CATEGORY_ALIASES = {
    "usability": "ux",
    "interaction": "ux",
    "ux_interaction": "ux",
    "visual_hierarchy": "visual",
    "color_typography": "visual",
    "design": "visual",
    "a11y": "accessibility",
    "branding": "brand",
}


class ImageSource(NamedTuple):
    """Either inline base64 data with its media type, or a remote URL."""

    media_type: Optional[str] = None
    data: Optional[str] = None
    url: Optional[str] = None

    @property
    def data_url(self) -> str:
        return self.url or f"data:{self.media_type};base64,{self.data}"


class AnalysisProvider(ABC):
    """
    Abstract base class for vision analysis providers.

    Subclasses must implement:
    - analyze(): Send images + prompt and return validated annotations
    - is_available(): Check if provider is configured and ready
    - name: Property returning the provider id used in the weight table
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider id (e.g., "anthropic", "openai", "local")"""

    @abstractmethod
    async def analyze(
        self,
        images: Sequence[str],
        prompt: str,
        context: Optional[dict] = None
    ) -> ProviderResponse:
        """
        Analyze screenshots and return annotations plus confidence.

        Args:
            images: Ordered image references (path, http(s) URL, data URL)
            prompt: Analysis prompt, already augmented with validated knowledge
            context: Optional dispatch context:
                    - role: "primary", "supplementary" or "fallback"

        Returns:
            ProviderResponse with schema-validated annotations

        Raises:
            ProviderTimeoutError: If the service timed out
            MalformedResponseError: If the payload is unparsable or invalid
            ProviderError: For any other API failure
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured and ready to use"""

    def _build_analysis_prompt(self, prompt: str, context: Optional[dict] = None) -> str:
        """
        Build the standard annotation prompt around the caller's prompt.

        Can be overridden by subclasses for provider-specific wording.
        """
        ctx = context or {}
        role = ctx.get("role", "primary")
        low, high = PROFESSIONAL_RANGE

        if role == "supplementary":
            intro = "You are a UX analysis expert providing a supplementary review."
        else:
            intro = "You are a professional UX analysis expert conducting a comprehensive audit."

        return f"""{intro}

**Analysis Context:** {prompt}

**Your Task:** Produce {low}-{high} specific, actionable findings covering
accessibility, conversion, UX patterns, visual design and brand.

**Output Format:** Return ONLY JSON:

```json
{{
  "confidence": <0.0-1.0, how confident you are in this analysis>,
  "annotations": [
    {{
      "id": "annotation-1",
      "x": <0-100, percent from left>,
      "y": <0-100, percent from top>,
      "imageIndex": 0,
      "category": "<accessibility|conversion|ux|visual|brand>",
      "severity": "<critical|suggested|enhancement>",
      "feedback": "<detailed insight with a concrete recommendation>"
    }}
  ]
}}
```

**Guidelines:**
- Be specific and actionable
- Cite research or industry standards where they apply
- Prioritize critical problems

Analyze the screenshots now:"""

    def _load_image(self, ref: str) -> ImageSource:
        """
        Resolve an image reference.

        Raises:
            ProviderError: If a local file does not exist or a data URL is broken
        """
        if ref.startswith("data:"):
            header, _, data = ref.partition(",")
            media_type = header[5:].split(";")[0]
            if not data or not media_type.startswith("image/"):
                raise ProviderError(f"Invalid image data URL: {ref[:40]}...", provider=self.name)
            return ImageSource(media_type=media_type, data=data)

        if ref.startswith(("http://", "https://")):
            return ImageSource(url=ref)

        path = Path(ref)
        if not path.exists():
            raise ProviderError(f"Image not found: {path}", provider=self.name)
        media_type = mimetypes.guess_type(path.name)[0] or "image/png"
        with open(path, "rb") as f:
            return ImageSource(media_type=media_type, data=base64.b64encode(f.read()).decode("utf-8"))

    def _parse_response(self, response_text: str, elapsed_seconds: float = 0.0) -> ProviderResponse:
        """
        Parse and validate a raw model reply.

        Accepts either {"annotations": [...], "confidence": x} or a bare
        annotation array, optionally wrapped in a markdown code block.
        When confidence is missing it is derived from the annotation count.

        Raises:
            MalformedResponseError: If the reply is not valid JSON, holds
                no annotations, or any annotation fails the schema
        """
        json_text = _extract_json(response_text or "")
        try:
            data = json.loads(json_text)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Failed to parse {self.name} response as JSON: {e}. "
                f"Response text: {json_text[:200]}",
                provider=self.name,
            ) from e

        confidence = None
        if isinstance(data, dict):
            raw_annotations = data.get("annotations")
            confidence = data.get("confidence")
        else:
            raw_annotations = data

        if not isinstance(raw_annotations, list) or not raw_annotations:
            raise MalformedResponseError(f"{self.name} returned no annotations", provider=self.name)

        try:
            annotations = [
                Annotation.model_validate(self._normalize_annotation(raw, i))
                for i, raw in enumerate(raw_annotations)
            ]
            if confidence is None:
                confidence = derive_confidence(len(annotations))
            return ProviderResponse(
                provider=self.name,
                annotations=annotations,
                confidence=confidence,
                elapsed_seconds=elapsed_seconds,
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise MalformedResponseError(
                f"Invalid {self.name} annotation payload: {e}", provider=self.name
            ) from e

    def _normalize_annotation(self, raw: Any, index: int) -> dict:
        """Map one raw annotation onto the Annotation schema."""
        if not isinstance(raw, dict):
            raise TypeError(f"Annotation {index} is not an object")

        severity = str(raw.get("severity", "")).strip().lower()
        category = str(raw.get("category", "")).strip().lower()
        feedback = raw.get("feedback") or raw.get("description") or raw.get("title") or ""

        normalized = {
            "id": str(raw.get("id") or f"{self.name}-{index + 1}"),
            "feedback": str(feedback).strip(),
            "category": CATEGORY_ALIASES.get(category, category),
            "severity": SEVERITY_ALIASES.get(severity, severity),
            "source_provider": self.name,
        }

        coords = raw.get("coordinates") if isinstance(raw.get("coordinates"), dict) else raw
        if coords.get("x") is not None and coords.get("y") is not None:
            normalized["coordinates"] = {
                "x": _clamp_percent(coords["x"]),
                "y": _clamp_percent(coords["y"]),
                "image_index": int(coords.get("imageIndex", coords.get("image_index", 0)) or 0),
            }

        if raw.get("researchValidated") is not None:
            normalized["research_validated"] = bool(raw["researchValidated"])
        sources = raw.get("researchSources")
        if isinstance(sources, list):
            normalized["research_sources"] = [str(s) for s in sources]

        return normalized


class ResearchProvider(ABC):
    """
    Abstract base class for research providers.

    Research providers do not see images; they answer a text query with
    cited findings used to back annotations.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider id"""

    @abstractmethod
    async def research(self, query: str) -> ResearchFinding:
        """
        Run one research query.

        Raises:
            ResearchError: If the lookup fails
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured"""


def derive_confidence(annotation_count: int) -> float:
    """Confidence for providers that do not report one."""
    low, high = PROFESSIONAL_RANGE
    if low <= annotation_count <= high:
        return 0.95
    if annotation_count >= ACCEPTABLE_MINIMUM:
        return 0.80
    return 0.50


def _clamp_percent(value: Any) -> float:
    return min(100.0, max(0.0, float(value)))


def _extract_json(response_text: str) -> str:
    """Pull JSON out of plain text or a markdown code block."""
    if "```json" in response_text:
        start = response_text.find("```json") + 7
        end = response_text.find("```", start)
        return response_text[start:end if end != -1 else None].strip()
    if "```" in response_text:
        start = response_text.find("```") + 3
        end = response_text.find("```", start)
        return response_text[start:end if end != -1 else None].strip()

    text = response_text.strip()
    if text.startswith(("{", "[")):
        return text
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if starts:
        start = min(starts)
        end = max(text.rfind("}"), text.rfind("]")) + 1
        if end > start:
            return text[start:end]
    return text
