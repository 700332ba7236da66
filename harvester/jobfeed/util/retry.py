"""Bounded retry combinator shared by navigation, login and modal capture.

Usage:
    from harvester.jobfeed.util.retry import bounded_retry, backoff_policy
    page = bounded_retry(lambda attempt: load(url), max_attempts=3,
                         delay_policy=backoff_policy(2.0), label='navigation')

Semantics:
 - `operation(attempt)` is called with the 1-based attempt number
 - an exception for which `is_terminal(exc)` is true propagates immediately
 - otherwise `on_retry(exc, attempt)` runs (recovery hook), then the caller sleeps
   `delay_policy(attempt)` seconds before the next attempt (`no_delay` by default)
 - after `max_attempts` failures a RetryExhaustedError wraps the last error
"""
from __future__ import annotations
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from ..errors import RetryExhaustedError, is_terminal as _default_is_terminal

T = TypeVar('T')

logger = logging.getLogger('retry')

DelayPolicy = Callable[[int], float]


def backoff_policy(base: float, factor: float = 1.8, cap: float = 60.0, jitter: float = 0.12) -> DelayPolicy:
    """Increasing delay: base * factor**(attempt-1), capped, plus a small random jitter."""
    def _delay(attempt: int) -> float:
        wait = min(cap, base * (factor ** max(0, attempt - 1)))
        return wait + random.uniform(0, jitter) if wait > 0 else 0.0
    return _delay


def jitter_policy(min_s: float, max_s: float) -> DelayPolicy:
    if max_s < min_s:
        max_s = min_s
    return lambda _attempt: random.uniform(min_s, max_s)


def no_delay(_attempt: int) -> float:
    return 0.0


def bounded_retry(
    operation: Callable[[int], T],
    *,
    max_attempts: int,
    delay_policy: DelayPolicy = no_delay,
    is_terminal: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    sleep: Callable[[float], object] = time.sleep,
    label: str = 'operation',
) -> T:
    if max_attempts < 1:
        raise ValueError('max_attempts must be >= 1')
    terminal = is_terminal or _default_is_terminal
    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return operation(attempt)
        except Exception as exc:
            if terminal(exc):
                raise
            last_error = exc
            logger.warning(f"{label} attempt {attempt}/{max_attempts} failed: {exc}")
            if attempt >= max_attempts:
                break
            if on_retry is not None:
                try:
                    on_retry(exc, attempt)
                except Exception as hook_exc:
                    # recovery is best-effort; the next attempt still runs
                    logger.warning(f"{label} recovery before retry failed: {hook_exc}")
            wait = delay_policy(attempt)
            if wait > 0:
                sleep(wait)
    raise RetryExhaustedError(label, max_attempts, last_error) from last_error


__all__ = ['bounded_retry', 'backoff_policy', 'jitter_policy', 'no_delay', 'DelayPolicy']
