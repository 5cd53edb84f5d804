"""Bounded retries for transient I/O failures."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from catalogsync.exceptions import TransientError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from catalogsync.config import SyncSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(
    settings: SyncSettings,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call ``await fn(*args, **kwargs)``, retrying only :class:`TransientError`.

    Attempts and backoff come from *settings*.  The last exception is
    re-raised unchanged once attempts are exhausted; every other exception
    propagates on the first occurrence.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(TransientError),
        stop=stop_after_attempt(settings.retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_min_wait or 1,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
