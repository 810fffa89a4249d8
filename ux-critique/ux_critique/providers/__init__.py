"""
Provider Implementations

Pluggable analysis and research providers behind common interfaces,
plus factories that turn Settings + PipelineConfig into the ordered,
weighted provider chain the orchestrator dispatches over.
"""

from typing import NamedTuple, Optional

from ..config import PipelineConfig, ProviderSpec, Settings
from .anthropic import AnthropicProvider
from .base import AnalysisProvider, ResearchProvider
from .local import LocalProvider
from .openai import OpenAIProvider
from .perplexity import PerplexityProvider

__all__ = [
    "AnalysisProvider",
    "ResearchProvider",
    "AnthropicProvider",
    "OpenAIProvider",
    "LocalProvider",
    "PerplexityProvider",
    "WeightedProvider",
    "get_provider",
    "build_provider_chain",
    "get_research_provider",
]


class WeightedProvider(NamedTuple):
    """A provider paired with its entry in the weight table."""

    provider: AnalysisProvider
    spec: ProviderSpec

    @property
    def id(self) -> str:
        return self.spec.id


def get_provider(provider_name: str, settings: Settings) -> AnalysisProvider:
    """
    Factory function to get a configured analysis provider.

    Args:
        provider_name: One of "anthropic", "openai", or "local"
        settings: Settings with API keys

    Raises:
        ValueError: If provider name is unknown or not configured
    """
    if provider_name == "anthropic":
        if not settings.has_anthropic():
            raise ValueError(
                "Anthropic API key not configured. "
                "Set ANTHROPIC_API_KEY in .env file"
            )
        return AnthropicProvider(api_key=settings.anthropic_api_key, model=settings.anthropic_model)

    elif provider_name == "openai":
        if not settings.has_openai():
            raise ValueError(
                "OpenAI API key not configured. "
                "Set OPENAI_API_KEY in .env file"
            )
        return OpenAIProvider(api_key=settings.openai_api_key, model=settings.openai_model)

    elif provider_name == "local":
        return LocalProvider(host=settings.ollama_host, model=settings.ollama_model)

    else:
        raise ValueError(
            f"Unknown provider: {provider_name}. "
            f"Choose from: anthropic, openai, local"
        )


def build_provider_chain(settings: Settings, config: PipelineConfig) -> list[WeightedProvider]:
    """
    Build the prioritised provider list from the weight table.

    Every provider named in ``config.providers`` must be constructible;
    an unconfigured provider is a configuration error, not something
    to discover mid-request.
    """
    return [WeightedProvider(get_provider(spec.id, settings), spec) for spec in config.providers]


def get_research_provider(settings: Settings) -> Optional[ResearchProvider]:
    """Perplexity research provider, or None when no key is configured."""
    if not settings.has_perplexity():
        return None
    return PerplexityProvider(api_key=settings.perplexity_api_key, model=settings.perplexity_model)
