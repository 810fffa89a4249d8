"""
Perplexity Research Provider

Answers short UX research questions with cited sources. Used by the
research enhancement pass to back annotations with evidence.
"""

import asyncio

import requests

from ..errors import ResearchError
from ..models import ResearchFinding
from .base import ResearchProvider

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityProvider(ResearchProvider):
    """
    Research provider backed by Perplexity's online models.

    Example:
        provider = PerplexityProvider(api_key="pplx-...")
        finding = await provider.research("UX best practices for checkout forms")
        print(finding.sources)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "sonar",
        request_timeout: float = 30,
        url: str = PERPLEXITY_URL
    ):
        self.model = model
        self.request_timeout = request_timeout
        self.url = url
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "perplexity"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def research(self, query: str) -> ResearchFinding:
        data = await asyncio.to_thread(self._query, query)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResearchError(f"Unexpected Perplexity response shape: {e}") from e

        citations = data.get("citations") or [
            result.get("url") for result in data.get("search_results", []) if result.get("url")
        ]
        return ResearchFinding(query=query, content=content, sources=[str(c) for c in citations])

    def _query(self, query: str) -> dict:
        try:
            response = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": "Answer with concise, cited UX research findings."},
                        {"role": "user", "content": query},
                    ],
                    "temperature": 0.2,
                    "max_tokens": 500,
                },
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise ResearchError(f"Perplexity API error: {e}") from e
        except ValueError as e:
            raise ResearchError(f"Perplexity returned invalid JSON: {e}") from e
