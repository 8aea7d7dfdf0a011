from __future__ import annotations


class InsightsError(Exception):
    """Base error for dashboard backend failures."""


class ConfigurationError(InsightsError):
    pass


class AuthenticationError(InsightsError):
    pass


class BackendCallError(InsightsError):
    """A single backend attempt failed. `status_code` is None for transport-level failures."""

    def __init__(
        self,
        status_code: int | None,
        detail: str,
        *,
        backend: str | None = None,
        retry_after_seconds: int | None = None,
    ):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.backend = backend
        self.retry_after_seconds = retry_after_seconds


class _TerminalCompletionError(InsightsError):
    def __init__(self, detail: str, *, backend: str | None = None, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.backend = backend
        self.status_code = status_code


class ExhaustedError(_TerminalCompletionError):
    """Every candidate failed with a retryable error. Carries the last backend's detail."""

    def __init__(
        self,
        detail: str,
        *,
        backend: str | None = None,
        status_code: int | None = None,
        attempts: int = 0,
        retry_after_seconds: int | None = None,
    ):
        super().__init__(detail, backend=backend, status_code=status_code)
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds


class UpstreamError(_TerminalCompletionError):
    """Non-retryable backend rejection or unusable payload."""


class ReportSourceError(InsightsError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestTimeoutError(InsightsError):
    """Server-side request deadline exceeded."""
