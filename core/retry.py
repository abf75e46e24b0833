"""
Core Module - Connect Retry.

============================================================
PURPOSE
============================================================
Bounded exponential backoff for establishing dependency
connections (time-series store, cache).

- Fixed attempt count
- Doubling delay, capped
- Exhaustion raises ConnectionFailedError

Only connection establishment is retried. Query failures after a
successful connect are surfaced to the caller immediately.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import RetryConfig
from .exceptions import ConnectionFailedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(config: RetryConfig):
    """Yield the delay to wait after each failed attempt except the last."""
    delay = config.initial_delay_seconds
    for _ in range(max(config.max_attempts - 1, 0)):
        yield min(delay, config.max_delay_seconds)
        delay *= config.backoff_multiplier


async def connect_with_backoff(
    connect: Callable[[], Awaitable[T]],
    name: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``connect`` until it succeeds or attempts are exhausted.

    Args:
        connect: Coroutine factory performing one connect attempt
        name: Dependency name for logging
        config: Retry policy
        sleep: Injected for tests

    Returns:
        Whatever ``connect`` returns on success

    Raises:
        ConnectionFailedError: After the final failed attempt
    """
    config = config or RetryConfig()
    delays = list(backoff_delays(config))
    last_error: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            result = await connect()
            if attempt > 0:
                logger.info(f"Connected to {name} after {attempt + 1} attempts")
            return result
        except Exception as e:
            last_error = e
            if attempt < len(delays):
                wait = delays[attempt]
                logger.warning(
                    f"Connect to {name} failed (attempt {attempt + 1}/{config.max_attempts}): "
                    f"{e}. Retrying in {wait:.1f}s"
                )
                await sleep(wait)
            else:
                logger.error(
                    f"Connect to {name} failed (attempt {attempt + 1}/{config.max_attempts}): {e}"
                )

    raise ConnectionFailedError(name, config.max_attempts, cause=last_error)
