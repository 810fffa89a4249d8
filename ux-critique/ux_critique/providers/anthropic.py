"""
Anthropic Claude Vision Provider

Primary analysis provider. Sends every screenshot plus the annotation
prompt to a vision-capable Claude model.
"""

import time
from typing import Optional, Sequence

import anthropic

from ..errors import ProviderError, ProviderTimeoutError
from ..models import ProviderResponse
from .base import AnalysisProvider


class AnthropicProvider(AnalysisProvider):
    """
    Analysis provider using Anthropic's Claude models.

    Example:
        provider = AnthropicProvider(api_key="sk-ant-...")
        response = await provider.analyze(["screen.png"], "Checkout page audit")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4096
    ):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key (get from https://console.anthropic.com/)
            model: Vision-capable Claude model
            max_tokens: Response token ceiling
        """
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "anthropic"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def analyze(
        self,
        images: Sequence[str],
        prompt: str,
        context: Optional[dict] = None
    ) -> ProviderResponse:
        started = time.perf_counter()
        content = []
        for ref in images:
            image = self._load_image(ref)
            if image.url:
                source = {"type": "url", "url": image.url}
            else:
                source = {"type": "base64", "media_type": image.media_type, "data": image.data}
            content.append({"type": "image", "source": source})
        content.append({"type": "text", "text": self._build_analysis_prompt(prompt, context)})

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": content}]
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeoutError(f"Anthropic request timed out: {e}", provider=self.name) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic API error: {e}", provider=self.name) from e

        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return self._parse_response(response_text, time.perf_counter() - started)
