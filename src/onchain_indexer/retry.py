"""Exponential backoff for transient chain RPC failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3  # attempts after the first call
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    multiplier: float = 2.0


DEFAULT_POLICY = RetryPolicy()


async def with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` and retry it on failure with exponential backoff.

    ``fn`` is called at most ``policy.max_retries + 1`` times. Delays start at
    ``base_delay`` and grow by ``multiplier`` up to ``max_delay``. When every
    attempt fails, the exception from the last attempt is re-raised as-is.
    """
    delay = policy.base_delay
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            attempt += 1
            if attempt > policy.max_retries:
                log.error("Max retries exceeded after %d attempts: %s", attempt, exc)
                raise
            log.warning(
                "Attempt %d/%d failed: %s (retrying in %.2fs)",
                attempt, policy.max_retries + 1, exc, delay,
            )
            await sleep(delay)
            delay = min(delay * policy.multiplier, policy.max_delay)
