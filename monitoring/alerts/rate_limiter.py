"""
Per-Recipient Rate Limiter.

============================================================
PURPOSE
============================================================
Caps messages per recipient per wall-clock minute.

- Counter key: rate_limit_{recipient}_{minute}
- The increment that creates a counter arms a one-minute expiry
- Counts above the cap are dropped; the counter keeps counting
  and the next minute starts a fresh key

Shared through the cache, so every process sending to the same
recipient draws from the same budget.

============================================================
"""

import logging

from core.clock import ClockProtocol
from storage import keys
from storage.cache import CacheLayer


logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RecipientRateLimiter:
    """Fixed per-minute message budget for each recipient."""

    def __init__(
        self,
        cache: CacheLayer,
        clock: ClockProtocol,
        max_per_minute: int = 20,
    ):
        self._cache = cache
        self._clock = clock
        self._max_per_minute = max_per_minute

    @property
    def max_per_minute(self) -> int:
        return self._max_per_minute

    async def acquire(self, recipient_id: int) -> bool:
        """Consume one slot; False when the recipient is over budget."""
        key = keys.rate_limit_key(recipient_id, self._clock.current_minute())
        count = await self._cache.increment(key, expire_seconds=WINDOW_SECONDS)
        if count > self._max_per_minute:
            logger.warning(f"Rate limit hit for recipient {recipient_id}, skipping message")
            return False
        return True
