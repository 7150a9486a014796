"""Typed orchestrator errors.

Only infrastructure problems are raised. Ambiguous user input goes through the
clarification fallback and failing capability steps are recorded in the
ExecutionOutcome instead.
"""


class OrchestratorError(Exception):
    """Typed errors so callers can distinguish transient from permanent failures."""

    kind = "internal_error"

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class CatalogError(OrchestratorError):
    """The intent catalog is missing or inconsistent."""

    kind = "catalog_misconfigured"


class ContextStoreError(OrchestratorError):
    """The user context store could not be read or written."""

    kind = "context_store_unavailable"

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message, retryable=retryable)


class OrchestratorShuttingDown(OrchestratorError):
    """A request arrived after shutdown() started."""

    kind = "shutting_down"

    def __init__(self, message: str = "Orchestrator is shutting down"):
        super().__init__(message, retryable=True)
