"""
Error taxonomy for EDEN.

Setup and infrastructure failures fail loudly. Per-request generation
failures are converted to fallback text by the orchestrator and never
surface to the caller.
"""


class EdenError(Exception):
    """Base class for every error raised by the conversation core."""


class ConfigurationError(EdenError):
    """Invalid setup detected at initialize() or when applying config values."""


class NotInitializedError(EdenError):
    """An operation was called before its service was initialized."""

    def __init__(self, service: str):
        super().__init__(f"{service} not initialized. Call initialize() first.")
        self.service = service


class RetrievalError(EdenError):
    """Embedding or persistent-store failure during store/search."""


class GenerationError(EdenError):
    """The generation engine failed to produce text."""


class ValidationError(EdenError):
    """The grounding validator failed to validate a response."""


class PersistenceWarning(UserWarning):
    """Persisted state could not be loaded; continuing with empty state."""
