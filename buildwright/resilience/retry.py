"""
Retry with exponential backoff for idempotent outbound calls.

Transient failures (timeouts, transport errors, 5xx and 429 responses) are
retried with delays of base, 2*base, 4*base, ... up to a cap; explicit client
errors, open circuits and cancellation are never retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.exceptions import CircuitOpenError, ServiceError, SessionAbortedError
from ..core.logging import get_logger
from .circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Backoff parameters."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)


def is_transient(exc: BaseException) -> bool:
    """Whether ``exc`` belongs to a failure class worth retrying."""
    if isinstance(exc, (SessionAbortedError, CircuitOpenError, asyncio.CancelledError)):
        return False
    if isinstance(exc, ServiceError):
        return exc.retryable
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    return False


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    operation: str = "call",
) -> T:
    """Call ``fn`` until it succeeds, fails permanently or attempts run out.

    The last exception is re-raised unchanged when retries are exhausted.
    """
    policy = policy or RetryPolicy()

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "Retrying transient failure",
            operation=operation,
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            error=str(exc),
        )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            result = await fn()
    return result


async def guarded_call(
    breaker: CircuitBreaker,
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    operation: str = "call",
) -> T:
    """Retry ``fn`` with backoff, every attempt passing through ``breaker``."""
    return await retry_with_backoff(
        lambda: breaker.execute(fn),
        policy,
        operation=operation,
    )
