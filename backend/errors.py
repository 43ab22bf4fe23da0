"""Error taxonomy for the analysis pipeline.

Only InvalidInputError (and EmptyInputError) ever reaches the caller of
analyze(); everything else is recovered inside the pipeline or turned into a
degraded result by the fallback chain.
"""

from typing import Optional


class AnalysisError(Exception):
    """Base class for every pipeline error."""


class InvalidInputError(AnalysisError, ValueError):
    """Input rejected before any model call (too short / too long)."""


class EmptyInputError(InvalidInputError):
    """Input is blank after trimming."""


class ModelError(AnalysisError):
    """A provider call failed."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class QuotaExceeded(ModelError):
    """Provider signalled a rate limit / quota exhaustion. Retry via failover."""


class ProviderError(ModelError):
    """Transient provider failure. Retry with exponential backoff."""


class Unrecoverable(AnalysisError):
    """Retries and failover are exhausted; the fallback chain takes over."""


class JsonExtractionFailed(AnalysisError):
    """No repair strategy produced a usable object from a model response."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text
