"""
errors.py - Exception types for the ingest pipeline.

Only authorization and orchestrator bookkeeping failures travel as exceptions
past a component boundary; fetch and per-candidate write failures are turned
into result values where they happen.
"""


class IngestError(Exception):
    """Base exception for pipeline errors."""
    pass


class AuthorizationError(IngestError):
    """Caller has no valid credential (401) or lacks the admin role (403)."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class SourceFetchError(IngestError):
    """A source could not be fetched or parsed."""
    pass


class PersistenceError(IngestError):
    """A store write failed."""
    pass


class RunLogError(PersistenceError):
    """A run log row could not be created or finalized."""
    pass


class OrchestratorFatalError(IngestError):
    """The run itself could not be tracked; the whole run is aborted."""
    pass


class UnknownSourceError(IngestError):
    """No fetcher is registered under the requested tag."""
    pass
