"""
OpenAI Vision Provider

Secondary analysis provider: replaces Claude when it fails and
contributes supplementary findings when it succeeds.
"""

import time
from typing import Optional, Sequence

import openai

from ..errors import ProviderError, ProviderTimeoutError
from ..models import ProviderResponse
from .base import AnalysisProvider


class OpenAIProvider(AnalysisProvider):
    """
    Analysis provider using OpenAI's vision-capable chat models.

    Example:
        provider = OpenAIProvider(api_key="sk-...")
        response = await provider.analyze(["screen.png"], "Signup flow review")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4.1-2025-04-14",
        max_tokens: int = 4000
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (get from https://platform.openai.com/api-keys)
            model: Vision-capable chat model
            max_tokens: Response token ceiling
        """
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def analyze(
        self,
        images: Sequence[str],
        prompt: str,
        context: Optional[dict] = None
    ) -> ProviderResponse:
        started = time.perf_counter()
        content = [{"type": "text", "text": self._build_analysis_prompt(prompt, context)}]
        for ref in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": self._load_image(ref).data_url, "detail": "high"}
            })

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                max_tokens=self.max_tokens,
                temperature=0.3,
                response_format={"type": "json_object"}
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"OpenAI request timed out: {e}", provider=self.name) from e
        except openai.APIError as e:
            raise ProviderError(f"OpenAI API error: {e}", provider=self.name) from e

        response_text = response.choices[0].message.content or ""
        return self._parse_response(response_text, time.perf_counter() - started)
