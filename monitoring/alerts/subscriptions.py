"""
Subscription Registry.

Recipients subscribe per validator. Any recipient with at least one
subscription is also in the global broadcast set; removing the last
subscription removes global membership. Membership is recomputed by
scanning subscription sets, which is fine while subscribers number in
the hundreds.
"""

import logging
from typing import Set

from storage import keys
from storage.cache import CacheLayer


logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Subscription sets stored in the cache."""

    def __init__(self, cache: CacheLayer):
        self._cache = cache

    async def subscribe(self, validator_id: str, recipient_id: int) -> None:
        await self._cache.add_member(keys.subscription_key(validator_id), recipient_id)
        await self._cache.add_member(keys.GLOBAL_SUBSCRIBERS_KEY, recipient_id)
        logger.info(f"Recipient {recipient_id} subscribed to {validator_id}")

    async def unsubscribe(self, validator_id: str, recipient_id: int) -> bool:
        """
        Remove one subscription.

        Returns:
            True if the recipient still has other subscriptions
        """
        await self._cache.remove_member(keys.subscription_key(validator_id), recipient_id)

        still_subscribed = await self.has_any_subscription(recipient_id)
        if not still_subscribed:
            await self._cache.remove_member(keys.GLOBAL_SUBSCRIBERS_KEY, recipient_id)

        logger.info(f"Recipient {recipient_id} unsubscribed from {validator_id}")
        return still_subscribed

    async def has_any_subscription(self, recipient_id: int) -> bool:
        for key in await self._cache.scan_keys(f"{keys.SUBSCRIPTION_PREFIX}*"):
            if await self._cache.is_member(key, recipient_id):
                return True
        return False

    async def recipients_for(self, validator_id: str) -> Set[int]:
        return _as_ids(await self._cache.members(keys.subscription_key(validator_id)))

    async def global_recipients(self) -> Set[int]:
        return _as_ids(await self._cache.members(keys.GLOBAL_SUBSCRIBERS_KEY))


def _as_ids(members: Set[str]) -> Set[int]:
    ids = set()
    for member in members:
        try:
            ids.add(int(member))
        except ValueError:
            logger.warning(f"Invalid recipient id in subscription set: {member!r}")
    return ids
