"""Fixed-interval polling for eventually consistent directory state."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from dgmigrate.core.errors import PollingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INTERVAL_SECONDS = 30
DEFAULT_MAX_ATTEMPTS = 60


def _is_falsy(value: Any) -> bool:
    return not value


async def wait_until(
    check: Callable[[], Awaitable[T]],
    description: str,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """Call ``check`` until it returns a truthy value.

    Args:
        check: Async callable probing the remote state
        description: What is being waited for (used in logs and errors)
        interval: Seconds between attempts
        attempts: Maximum number of calls

    Returns:
        The first truthy value returned by ``check``

    Raises:
        PollingTimeoutError: If ``check`` never returned a truthy value
    """

    def _log_wait(retry_state) -> None:
        logger.info(
            f"Waiting for {description} "
            f"(attempt {retry_state.attempt_number}/{attempts}, next check in {interval}s)"
        )

    retrying = AsyncRetrying(
        retry=retry_if_result(_is_falsy),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        before_sleep=_log_wait,
    )

    # AsyncRetrying only awaits coroutine functions, not lambdas returning coroutines
    async def _attempt() -> T:
        return await check()

    try:
        result = await retrying(_attempt)
    except RetryError as e:
        raise PollingTimeoutError(description, attempts) from e

    logger.info(f"Done waiting for {description}")
    return result


async def wait_for_presence(
    fetch: Callable[[], Awaitable[T | None]],
    description: str,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """Poll ``fetch`` until it returns an object, and return that object."""
    return await wait_until(fetch, description, interval=interval, attempts=attempts)


async def wait_for_absence(
    fetch: Callable[[], Awaitable[Any]],
    description: str,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> None:
    """Poll ``fetch`` until it returns nothing."""

    async def _gone() -> bool:
        return not await fetch()

    await wait_until(_gone, description, interval=interval, attempts=attempts)
