"""Shared concurrency primitives.

Two patterns are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  The crawler uses it
   to run one batch of fetches with a hard ceiling on in-flight requests.

2. **retry_async** -- bounded retry with linear backoff for calls into
   external providers (embedding model, vector store).  Only the exception
   types passed in ``retry_on`` are retried; anything else propagates
   immediately.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from sitekb.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding the number of awaitables running at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def retry_async(
    fn: Callable[[], Awaitable[_T]],
    *,
    max_attempts: int,
    backoff: float,
    retry_on: tuple[type[BaseException], ...],
    operation: str,
    logger: structlog.BoundLogger | None = None,
) -> _T:
    """Call ``fn()`` until it succeeds or ``max_attempts`` is exhausted.

    Sleeps ``backoff * attempt`` seconds between attempts.  The last
    exception is re-raised unchanged once attempts run out.
    """
    if logger is None:
        logger = _logger

    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                )
                raise
            logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                error=str(exc),
            )
            await asyncio.sleep(backoff * attempt)

    raise AssertionError("unreachable")  # pragma: no cover
