"""Bounded retry for conditions that can only be polled."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from upstream_devnet.observability import get_logger

T = TypeVar("T")

logger = get_logger("upstream_devnet.retry")


async def retry_on_error(fn: Callable[[], Awaitable[T]],
                         should_retry: Callable[[Exception], bool],
                         interval: float,
                         max_attempts: int) -> T:
    """Call ``fn`` until it does not raise and return its result.

    After a failure ``fn`` is called again ``interval`` seconds later if
    ``should_retry(error)`` is true and fewer than ``max_attempts`` calls were
    made. Otherwise the error is re-raised as is.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as err:
            if attempt >= max_attempts or not should_retry(err):
                raise
            logger.debug("Retrying after error",
                         attempt=attempt,
                         max_attempts=max_attempts,
                         error=str(err))
        await asyncio.sleep(interval)


def retry(fn: Callable[[], Awaitable[T]]) -> Awaitable[T]:
    """Call ``fn`` until it does not raise, for up to three seconds."""
    return retry_on_error(fn, lambda _err: True, 0.1, 30)
