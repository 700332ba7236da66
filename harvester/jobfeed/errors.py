"""Error taxonomy for the harvesting pipeline.

Every error carries a `retryable` flag so the retry combinator and the capture
state machine can classify failures without string matching.
"""
from __future__ import annotations
from typing import Iterable, Optional


class HarvesterError(Exception):
    retryable: bool = True

    def __init__(self, message: str, *, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class RetryableError(HarvesterError):
    retryable = True


class NonRetryableError(HarvesterError):
    retryable = False


class ConfigError(NonRetryableError):
    pass


class NavigationError(RetryableError):
    """Navigation did not settle (timeout, crashed tab, network failure)."""

    def __init__(self, message: str, *, url: str | None = None, timed_out: bool = False):
        super().__init__(message)
        self.url = url
        self.timed_out = timed_out


class CaptureError(RetryableError):
    """A capture step failed in a way that may succeed on a later attempt."""


class IncompleteDetailsError(CaptureError):
    """Extraction ran but required fields came back empty."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Incomplete job details - missing: {', '.join(self.missing)}")


class RetryExhaustedError(RetryableError):
    def __init__(self, label: str, attempts: int, last_error: BaseException | None):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else 'Unknown error'
        super().__init__(f"{label} failed after {attempts} attempts: {detail}")

    @property
    def timed_out(self) -> bool:
        return bool(getattr(self.last_error, 'timed_out', False))


TERMINAL_REASONS = ('access_denied', 'job_deleted', 'content_blocked', 'job_not_available')


class TerminalJobError(NonRetryableError):
    """The site reports the job as permanently unavailable."""

    def __init__(self, reason: str, message: str | None = None):
        if reason not in TERMINAL_REASONS:
            raise ValueError(f"Unknown terminal reason: {reason}")
        self.reason = reason
        super().__init__(message or reason.replace('_', ' ').capitalize())


class LoginRejectedError(NonRetryableError):
    """The login form displayed an error banner (bad credentials, locked account)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Login rejected: {reason}")


class LoginError(RetryableError):
    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class SessionFatalError(NonRetryableError):
    """The authenticated, connected browser session can no longer be established."""


class StoreError(HarvesterError):
    pass


class AlreadyRunningError(NonRetryableError):
    pass


def is_terminal(exc: BaseException) -> bool:
    return isinstance(exc, HarvesterError) and not exc.retryable


def is_timeout(exc: BaseException) -> bool:
    if getattr(exc, 'timed_out', False):
        return True
    return 'timeout' in str(exc).lower()


__all__ = [
    'HarvesterError', 'RetryableError', 'NonRetryableError', 'ConfigError',
    'NavigationError', 'CaptureError', 'IncompleteDetailsError', 'RetryExhaustedError',
    'TERMINAL_REASONS', 'TerminalJobError', 'LoginRejectedError', 'LoginError',
    'SessionFatalError', 'StoreError', 'AlreadyRunningError', 'is_terminal', 'is_timeout',
]
