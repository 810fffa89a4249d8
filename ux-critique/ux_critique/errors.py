"""
Exception Taxonomy

Precondition failures are raised to the caller verbatim.
Provider failures are recovered inside the orchestrator by escalating
to the next provider and only surface as AllProvidersFailedError.
Quality failures are never exceptions: they are structured results.
"""

from typing import Optional


class UXCritiqueError(Exception):
    """Base class for all pipeline errors"""


class PreconditionError(UXCritiqueError, ValueError):
    """Request rejected before any provider was called"""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class ProviderError(UXCritiqueError):
    """
    A single provider call failed.

    Attributes:
        provider: Id of the provider that failed
    """

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within its time budget"""


class MalformedResponseError(ProviderError):
    """Provider payload could not be parsed or failed schema validation"""


class LowConfidenceError(ProviderError):
    """Provider's clamped self-reported confidence is below its threshold"""


class ProviderUnavailableError(ProviderError):
    """Provider is not configured or its service is unreachable"""


class AllProvidersFailedError(UXCritiqueError):
    """Every provider in the dispatch chain failed"""

    def __init__(self, reasons: dict[str, str]):
        self.reasons = dict(reasons)
        detail = ", ".join(f"{name}: {reason}" for name, reason in self.reasons.items())
        super().__init__(f"All providers failed ({detail})" if detail else "No providers configured")


class RetrievalError(UXCritiqueError):
    """Knowledge retrieval failed"""


class ResearchError(UXCritiqueError):
    """Research lookup failed"""


class PipelineTimeoutError(UXCritiqueError):
    """Overall pipeline wall-clock budget exhausted"""


class AnalysisCancelled(UXCritiqueError):
    """Caller cancelled the analysis; no partial result is produced"""


class CaptureError(UXCritiqueError):
    """Screenshot capture of a live page failed"""
