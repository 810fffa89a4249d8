"""
Configuration Management

Two explicit configuration objects:

- Settings: credentials and model names, loaded from .env files and
  environment variables.
- PipelineConfig: thresholds, bounds, provider weights and time budget.
  Built once and passed into the PipelineController; nothing in the
  pipeline reads the environment after that.
"""

import math
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator


class TargetAnnotations(BaseModel):
    """
    Annotation count bounds.

    Attributes:
        minimum: Fewer annotations than this is an insufficient analysis
        professional: Lower end of the professional consulting range
        maximum: More than this is noise and gets truncated
    """

    model_config = ConfigDict(frozen=True)

    minimum: int = Field(default=12, ge=1)
    professional: int = Field(default=16, ge=1)
    maximum: int = Field(default=19, ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> "TargetAnnotations":
        if not self.minimum <= self.professional <= self.maximum:
            raise ValueError("Expected minimum <= professional <= maximum")
        return self


class QualityThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    standard: float = Field(default=0.75, ge=0, le=1)
    strict: float = Field(default=0.85, ge=0, le=1)
    strict_provider_quality: float = Field(default=0.85, ge=0, le=1)
    professional: float = Field(default=0.75, ge=0, le=1)

    def overall_threshold(self, strict: bool) -> float:
        return self.strict if strict else self.standard


class ProviderSpec(BaseModel):
    """
    One entry of the prioritised provider table.

    Attributes:
        id: Provider identifier ("anthropic", "openai", "local", ...)
        weight: Share in the merged confidence; the table must sum to 1.0
        confidence_threshold: Minimum self-reported confidence to accept
        timeout_seconds: Per-call ceiling, further capped by the stage budget
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    weight: float = Field(gt=0, le=1)
    confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    timeout_seconds: float = Field(default=60.0, gt=0)


class KnowledgeConfig(BaseModel):
    """RAG filtering policy"""

    model_config = ConfigDict(frozen=True)

    min_relevance: float = Field(default=0.75, ge=0, le=1)
    max_entries: int = Field(default=8, ge=1)
    max_content_length: int = Field(default=500, ge=50)
    require_image_relevance: bool = True
    enable_content_filtering: bool = True
    retrieval_limit: int = Field(default=20, ge=1)


class BudgetConfig(BaseModel):
    """
    Wall-clock budget. Each stage gets total_seconds * its fraction,
    never more than what remains.
    """

    model_config = ConfigDict(frozen=True)

    total_seconds: float = Field(default=120.0, gt=0)
    retrieval_fraction: float = Field(default=0.10, gt=0, le=1)
    dispatch_fraction: float = Field(default=0.60, gt=0, le=1)
    research_fraction: float = Field(default=0.15, gt=0, le=1)
    recovery_fraction: float = Field(default=0.40, gt=0, le=1)


def default_providers() -> list[ProviderSpec]:
    return [
        ProviderSpec(id="anthropic", weight=0.70, confidence_threshold=0.85, timeout_seconds=60),
        ProviderSpec(id="openai", weight=0.20, confidence_threshold=0.75, timeout_seconds=60),
        ProviderSpec(id="local", weight=0.10, confidence_threshold=0.70, timeout_seconds=120),
    ]


class PipelineConfig(BaseModel):
    """
    Complete, immutable pipeline configuration.

    The first provider in ``providers`` is the preferred (primary) one.

    Example:
        config = PipelineConfig(
            target_annotations=TargetAnnotations(minimum=8, professional=10, maximum=14)
        )
        controller = PipelineController(config, providers)
    """

    model_config = ConfigDict(frozen=True)

    target_annotations: TargetAnnotations = Field(default_factory=TargetAnnotations)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)
    providers: list[ProviderSpec] = Field(default_factory=default_providers, min_length=1)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    min_prompt_length: int = Field(default=10, ge=1)
    max_prompt_length: int = Field(default=2000, ge=1)
    max_images: int = Field(default=10, ge=1)
    max_recovery_strategies: int = Field(default=2, ge=0, le=2)
    research_max_queries: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def _check_providers(self) -> "PipelineConfig":
        total = sum(spec.weight for spec in self.providers)
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Provider weights must sum to 1.0, got {total:.3f}")
        ids = [spec.id for spec in self.providers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate provider ids: {ids}")
        return self

    @property
    def preferred_provider(self) -> str:
        return self.providers[0].id

    def provider_spec(self, provider_id: str) -> Optional[ProviderSpec]:
        for spec in self.providers:
            if spec.id == provider_id:
                return spec
        return None


class Settings(BaseModel):
    """
    Credentials and model names.

    Attributes:
        anthropic_api_key: Anthropic API key (optional)
        openai_api_key: OpenAI API key (optional)
        perplexity_api_key: Perplexity API key for research (optional)
        ollama_host: Ollama server URL for local models
        ollama_model: Vision model name for Ollama (default: llava)
        anthropic_model: Claude model used for analysis
        openai_model: OpenAI model used for analysis
        perplexity_model: Perplexity model used for research
        pipeline_timeout_seconds: Overall wall-clock budget per request
    """

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    perplexity_api_key: Optional[str] = None
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llava"
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4.1-2025-04-14"
    perplexity_model: str = "sonar"
    pipeline_timeout_seconds: float = Field(default=120.0, gt=0)

    def has_anthropic(self) -> bool:
        """Check if Anthropic is configured"""
        return bool(self.anthropic_api_key)

    def has_openai(self) -> bool:
        """Check if OpenAI is configured"""
        return bool(self.openai_api_key)

    def has_perplexity(self) -> bool:
        """Check if Perplexity is configured"""
        return bool(self.perplexity_api_key)


def load_config(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from .env file and environment variables.

    Searches for .env file in:
    1. Provided env_file path
    2. Current directory
    3. User's home directory

    Environment variables override .env file values.

    Args:
        env_file: Optional path to .env file

    Returns:
        Settings with credentials and model names
    """
    if env_file and env_file.exists():
        load_dotenv(env_file)
    elif Path(".env").exists():
        load_dotenv(".env")
    elif (Path.home() / ".env").exists():
        load_dotenv(Path.home() / ".env")

    defaults = Settings()
    return Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        perplexity_api_key=os.getenv("PERPLEXITY_API_KEY"),
        ollama_host=os.getenv("OLLAMA_HOST", defaults.ollama_host),
        ollama_model=os.getenv("OLLAMA_MODEL", defaults.ollama_model),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", defaults.anthropic_model),
        openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
        perplexity_model=os.getenv("PERPLEXITY_MODEL", defaults.perplexity_model),
        pipeline_timeout_seconds=float(
            os.getenv("PIPELINE_TIMEOUT_SECONDS", str(defaults.pipeline_timeout_seconds))
        ),
    )


def load_pipeline_config(settings: Settings, **overrides) -> PipelineConfig:
    """
    Build the explicit pipeline configuration.

    Only the time budget comes from settings; everything else uses the
    defaults unless overridden by keyword.
    """
    budget = BudgetConfig(total_seconds=settings.pipeline_timeout_seconds)
    return PipelineConfig(**{"budget": budget, **overrides})
