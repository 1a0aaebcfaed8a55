"""Exceptions raised by cc-recall."""


class CcRecallError(Exception):
    """Base class for cc-recall errors."""


class SessionNotFoundError(CcRecallError):
    """No session exists with the requested identifier."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class BackendUnavailableError(CcRecallError):
    """The persistent store could not be reached or timed out."""

    retryable = True


class InvalidDateError(CcRecallError, ValueError):
    """A date bound could not be parsed."""


class QueryCancelledError(CcRecallError):
    """The caller cancelled a query before it completed."""
