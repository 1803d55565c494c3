"""Bounded exponential backoff for provider calls (tenacity)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import Settings, get_settings
from .errors import TRANSIENT_STATUSES

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for rate-limited / unavailable failures, judged by ``exc.status``."""
    return getattr(exc, "status", None) in TRANSIENT_STATUSES


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Transient provider failure (%s); retry %d in %.1fs",
        exc,
        retry_state.attempt_number,
        delay,
    )


@dataclass
class RetryPolicy:
    """Wrap any zero-argument async operation with retries on transient errors.

    Delays are ``base_delay * 2 ** (n - 1)`` for retry ``n`` (2s, 4s, 8s by
    default). Once ``max_retries`` retries are spent the last transient error
    is re-raised unchanged; non-transient errors propagate on first sight.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(max_retries=settings.retry_max_retries, base_delay=settings.retry_base_delay)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        async for attempt in self._retrying():
            with attempt:
                return await operation()
        raise RuntimeError("retry loop ended without an outcome")
