from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from utils.logger import get_logger

_logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class TransientError(Exception):
    """A failure that may succeed if the same call is attempted again."""


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.2,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    sleep: Optional[Sleep] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Await ``operation()`` until it succeeds or ``max_attempts`` is reached.

    Between attempts waits ``base_delay * 2 ** (attempt - 1)`` seconds.
    Only exceptions listed in ``retry_on`` trigger another attempt; anything
    else propagates immediately. When the last attempt fails its exception is
    re-raised unchanged.

    Args:
        operation: zero-argument coroutine factory, called once per attempt.
        max_attempts: total number of attempts, at least 1.
        base_delay: delay in seconds before the second attempt.
        retry_on: exception types considered transient.
        sleep: awaitable used for the backoff, defaults to asyncio.sleep.
        on_retry: called with (attempt, error) before each backoff.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")
    sleep = sleep or asyncio.sleep

    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                _logger.warning(f"Giving up after {attempt} attempts: {exc!r}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            _logger.info(
                f"Attempt {attempt}/{max_attempts} failed ({exc!r}), retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            await sleep(delay)
            attempt += 1
