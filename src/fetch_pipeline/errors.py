"""
Error taxonomy for fetch_pipeline.
"""
from typing import Optional

from .types import FailureEnvelope, FailureKind


class ConfigError(ValueError):
    """Malformed URL, params or client configuration. Never retried."""


class FetchError(Exception):
    """Raised to callers when a request ends in a FailureEnvelope."""

    def __init__(self, failure: FailureEnvelope):
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind

    @property
    def status_code(self) -> Optional[int]:
        return self.failure.status_code

    def __repr__(self) -> str:
        return (
            f"FetchError(kind={self.failure.kind.value!r}, "
            f"status_code={self.failure.status_code!r}, "
            f"message={self.failure.message!r})"
        )


def application_failure(
    error: BaseException,
    request=None,
) -> FailureEnvelope:
    """Wrap an exception raised by interceptor or user code."""
    if isinstance(error, FetchError):
        return error.failure
    return FailureEnvelope(
        message=str(error) or type(error).__name__,
        kind=FailureKind.APPLICATION,
        request=request,
        cause=error,
    )
