"""
Error taxonomy for upstream calls and streaming sessions.

Only CreationError crosses into the HTTP layer on the streaming path; every
other kind is absorbed by the session controller and turned into a close code.
"""

from typing import Optional


class TranslatorError(Exception):
    """Base class for all translator errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UpstreamError(TranslatorError):
    """Raised when a call to the Squad API fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        invocation_id: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.invocation_id = invocation_id
        super().__init__(message)


class CreationError(UpstreamError):
    """Invocation could not be created. Fatal, raised before any stream starts."""


class PollError(UpstreamError):
    """Status poll failed. Retried under the backoff policy."""


class StreamUnavailable(UpstreamError):
    """Log feed not available yet. Expected while an invocation is pending."""


class ExhaustedRetries(TranslatorError):
    """Too many consecutive poll failures for one invocation."""

    def __init__(self, invocation_id: str, attempts: int, last_error: Optional[Exception] = None) -> None:
        self.invocation_id = invocation_id
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"Polling invocation {invocation_id} failed {attempts} consecutive times{detail}"
        )


class InvocationTimeout(TranslatorError):
    """Invocation did not reach a terminal status in time."""

    def __init__(self, invocation_id: str, elapsed: float) -> None:
        self.invocation_id = invocation_id
        self.elapsed = elapsed
        super().__init__(f"Invocation {invocation_id} not finished after {elapsed:.1f}s")


class ClientDisconnected(TranslatorError):
    """Downstream client went away. Not an error, triggers silent cleanup."""
