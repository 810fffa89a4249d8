"""
Local LLM Vision Provider

Tertiary analysis provider using local vision models via Ollama
(LLaVA, BakLLaVA, ...). Fully offline, no API costs.
"""

import asyncio
import time
from typing import Optional, Sequence

import requests

from ..errors import ProviderError, ProviderTimeoutError, ProviderUnavailableError
from ..models import ProviderResponse
from .base import AnalysisProvider


class LocalProvider(AnalysisProvider):
    """
    Analysis provider using local LLMs through Ollama.

    Requirements:
    - Ollama installed (https://ollama.ai/)
    - Vision model pulled (e.g., `ollama pull llava`)

    Local models only accept inline images, so remote URLs are not
    supported here.
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "llava",
        request_timeout: float = 120
    ):
        self.host = host.rstrip("/")
        self.model = model
        self.request_timeout = request_timeout

    @property
    def name(self) -> str:
        return "local"

    def is_available(self) -> bool:
        """Check if the Ollama server answers"""
        try:
            response = requests.get(f"{self.host}/api/tags", timeout=2)
            return response.status_code == 200
        except requests.RequestException:
            return False

    async def analyze(
        self,
        images: Sequence[str],
        prompt: str,
        context: Optional[dict] = None
    ) -> ProviderResponse:
        started = time.perf_counter()
        image_data = []
        for ref in images:
            image = self._load_image(ref)
            if image.url:
                raise ProviderUnavailableError(
                    "Local models need inline images, got a remote URL", provider=self.name
                )
            image_data.append(image.data)

        payload = {
            "model": self.model,
            "prompt": self._build_analysis_prompt(prompt, context),
            "images": image_data,
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.3, "num_predict": 2048}
        }
        response_text = await asyncio.to_thread(self._generate, payload)
        return self._parse_response(response_text, time.perf_counter() - started)

    def _generate(self, payload: dict) -> str:
        try:
            response = requests.post(
                f"{self.host}/api/generate",
                json=payload,
                timeout=self.request_timeout
            )
        except requests.Timeout as e:
            raise ProviderTimeoutError(f"Ollama request timed out: {e}", provider=self.name) from e
        except requests.RequestException as e:
            raise ProviderUnavailableError(
                f"Failed to connect to Ollama at {self.host}: {e}", provider=self.name
            ) from e

        if response.status_code != 200:
            raise ProviderError(f"Ollama API error: {response.text[:200]}", provider=self.name)
        return response.json().get("response", "")
