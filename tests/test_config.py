"""
Tests for configuration models and environment loading.
"""

import pytest
from pydantic import ValidationError

from conftest import make_annotation, make_annotations
from ux_critique.config import (
    BudgetConfig,
    PipelineConfig,
    ProviderSpec,
    TargetAnnotations,
    load_config,
    load_pipeline_config,
)
from ux_critique.models import PipelineResult, ProviderResponse


class TestPipelineConfig:

    def test_defaults(self):
        config = PipelineConfig()

        assert config.preferred_provider == "anthropic"
        assert config.target_annotations.minimum == 12
        assert config.target_annotations.maximum == 19
        assert config.quality.overall_threshold(strict=True) == 0.85
        assert config.provider_spec("local").timeout_seconds == 120
        assert config.provider_spec("gemini") is None

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError, match="sum to 1.0"):
            PipelineConfig(providers=[
                ProviderSpec(id="anthropic", weight=0.5, confidence_threshold=0.85, timeout_seconds=60),
                ProviderSpec(id="openai", weight=0.2, confidence_threshold=0.75, timeout_seconds=60),
            ])

    def test_duplicate_provider_ids(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            PipelineConfig(providers=[
                ProviderSpec(id="local", weight=0.5, confidence_threshold=0.7, timeout_seconds=60),
                ProviderSpec(id="local", weight=0.5, confidence_threshold=0.7, timeout_seconds=60),
            ])

    def test_target_bounds_ordered(self):
        with pytest.raises(ValidationError):
            TargetAnnotations(minimum=20, professional=16, maximum=19)

    def test_frozen(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.max_images = 3


class TestLoadConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        for key in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "PERPLEXITY_API_KEY",
                    "OLLAMA_MODEL", "PIPELINE_TIMEOUT_SECONDS"):
            monkeypatch.delenv(key, raising=False)

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.setenv("OLLAMA_MODEL", "llava:13b")
        monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "45")
        settings = load_config()

        assert settings.has_anthropic()
        assert not settings.has_openai()
        assert settings.ollama_model == "llava:13b"
        assert load_pipeline_config(settings).budget.total_seconds == 45

    def test_defaults_without_environment(self):
        settings = load_config()

        assert not settings.has_perplexity()
        assert settings.pipeline_timeout_seconds == 120.0

    def test_pipeline_overrides(self):
        config = load_pipeline_config(load_config(), max_images=2, budget=BudgetConfig(total_seconds=5))

        assert config.max_images == 2
        assert config.budget.total_seconds == 5


class TestModels:

    def test_provider_confidence_clamped(self):
        response = ProviderResponse(provider="openai", annotations=[make_annotation()], confidence=-0.4)
        assert response.confidence == 0.0

    def test_annotation_rejects_unknown_category(self):
        with pytest.raises(ValidationError):
            make_annotation(category="weather")

    def test_result_summary(self):
        result = PipelineResult(
            success=False,
            annotations=make_annotations(6),
            error="Quality validation failed: annotation count 6 < minimum 12",
        )

        assert len(result.critical_annotations) == 2
        assert "FAILED" in result.summary()
        assert "6 (2 critical)" in result.summary()
