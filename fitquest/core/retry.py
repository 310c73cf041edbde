"""Retry of whole logical operations that lost an optimistic-concurrency race."""
import logging
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fitquest.core.config import settings
from fitquest.core.errors import ConflictError

logger = logging.getLogger("fitquest.retry")

T = TypeVar("T")


def _validate_retry_params(
    max_attempts: int,
    min_wait_seconds: float,
    max_wait_seconds: float,
) -> None:
    if max_attempts < 1:
        raise ValueError(
            f"max_attempts must be >= 1, got {max_attempts}. "
            "If max_attempts <= 0, the operation would never execute."
        )
    if min_wait_seconds < 0 or max_wait_seconds < 0:
        raise ValueError("retry wait bounds must not be negative")
    if min_wait_seconds > max_wait_seconds:
        raise ValueError(
            f"min_wait_seconds ({min_wait_seconds}) cannot exceed "
            f"max_wait_seconds ({max_wait_seconds})"
        )


def conflict_retrying(
    max_attempts: Optional[int] = None,
    min_wait_seconds: Optional[float] = None,
    max_wait_seconds: Optional[float] = None,
) -> Retrying:
    """
    Build a Retrying controller that re-runs an operation on ConflictError.

    Defaults come from settings at call time so tests can shrink the backoff.
    Once attempts are exhausted the last ConflictError is re-raised.
    """
    attempts = max_attempts if max_attempts is not None else settings.TXN_MAX_ATTEMPTS
    min_wait = min_wait_seconds if min_wait_seconds is not None else settings.TXN_RETRY_MIN_WAIT_SECONDS
    max_wait = max_wait_seconds if max_wait_seconds is not None else settings.TXN_RETRY_MAX_WAIT_SECONDS
    _validate_retry_params(attempts, min_wait, max_wait)

    return Retrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait or 1, min=min_wait, max=max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def run_with_retry(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``func`` (one full transaction) and retry it from scratch on conflict."""
    return conflict_retrying()(func, *args, **kwargs)
