"""
UX Critique - Multi-Model UX Analysis with Quality Control

Coordinates several vision models to critique UI screenshots, filters
knowledge-base context before it reaches a model, and holds the merged
result to a professional quality bar with bounded recovery.

Supports multiple vision providers:
- Anthropic Claude
- OpenAI GPT-4.1
- Local LLMs (Ollama/LLaVA)

Research citations via Perplexity are optional.
"""

__version__ = "0.2.0"

from .business_impact import BusinessImpactScorer
from .config import PipelineConfig, Settings, load_config, load_pipeline_config
from .context_validator import ContextValidator
from .errors import AllProvidersFailedError, AnalysisCancelled, PreconditionError, UXCritiqueError
from .models import AnalysisRequest, Annotation, PipelineOptions, PipelineResult, QualityMetrics
from .orchestrator import ModelOrchestrator
from .pipeline import PipelineController, RecoveryStrategy, Stage
from .quality import QualityAssessor

__all__ = [
    "AnalysisRequest",
    "Annotation",
    "PipelineOptions",
    "PipelineResult",
    "QualityMetrics",
    "PipelineConfig",
    "Settings",
    "load_config",
    "load_pipeline_config",
    "PipelineController",
    "RecoveryStrategy",
    "Stage",
    "ModelOrchestrator",
    "QualityAssessor",
    "ContextValidator",
    "BusinessImpactScorer",
    "UXCritiqueError",
    "PreconditionError",
    "AllProvidersFailedError",
    "AnalysisCancelled",
]
