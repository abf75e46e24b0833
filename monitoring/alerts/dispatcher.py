"""
Alert Dispatcher.

============================================================
PURPOSE
============================================================
Persists alerts, broadcasts them on the alert channel and
delivers them to subscribers.

FLOW:
- publish(): store alert_{id} without expiry, push the payload
  onto the channel. Emission never waits on recipients.
- listen(): subscribe-and-wait loop; each payload is delivered
- deliver(): entity subscribers, or the default recipients when
  there are none (never the global set). Each recipient passes
  the per-minute rate limit independently.

PRINCIPLES:
- A failed recipient never aborts delivery to the rest
- At-least-once; duplicates are tolerated

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from core.config import AlertConfig
from core.exceptions import MonitorError
from storage import keys
from storage.cache import CacheLayer, decode_json, encode_json

from ..models import Alert
from .rate_limiter import RecipientRateLimiter
from .subscriptions import SubscriptionRegistry


logger = logging.getLogger(__name__)


# ============================================================
# SENDER INTERFACE
# ============================================================

class MessageSender(ABC):
    """Delivers one message to one recipient."""

    @abstractmethod
    async def send_alert(self, recipient_id: int, alert: Alert) -> None:
        """Raises DeliveryError on failure."""

    @abstractmethod
    async def send_text(self, recipient_id: int, text: str) -> None:
        """Raises DeliveryError on failure."""


class LogSender(MessageSender):
    """Fallback sender used when no chat transport is configured."""

    async def send_alert(self, recipient_id: int, alert: Alert) -> None:
        logger.info(
            f"Alert {alert.id} for {recipient_id}: {alert.validator_id} is now {alert.status.value}"
        )

    async def send_text(self, recipient_id: int, text: str) -> None:
        logger.info(f"Message for {recipient_id}: {text}")


# ============================================================
# DISPATCHER
# ============================================================

class AlertDispatcher:
    """
    Alert persistence, broadcast and rate-limited fan-out.
    """

    def __init__(
        self,
        cache: CacheLayer,
        subscriptions: SubscriptionRegistry,
        rate_limiter: RecipientRateLimiter,
        sender: MessageSender,
        config: Optional[AlertConfig] = None,
    ):
        self._cache = cache
        self._subscriptions = subscriptions
        self._rate_limiter = rate_limiter
        self._sender = sender
        self._config = config or AlertConfig()

    @property
    def subscriptions(self) -> SubscriptionRegistry:
        return self._subscriptions

    # --------------------------------------------------------
    # PERSISTENCE
    # --------------------------------------------------------

    async def save_alert(self, alert: Alert) -> None:
        await self._cache.set_json(keys.alert_key(alert.id), alert.to_dict())

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        found, data = await self._cache.get_json(keys.alert_key(alert_id))
        if not found:
            return None
        return Alert.from_dict(data)

    async def publish(self, alert: Alert) -> None:
        """Persist the alert and push it onto the broadcast channel."""
        await self.save_alert(alert)
        await self._cache.publish(self._config.channel, encode_json(alert.to_dict()))
        logger.debug(f"Published alert {alert.id} to {self._config.channel}")

    # --------------------------------------------------------
    # DELIVERY
    # --------------------------------------------------------

    async def deliver(self, alert: Alert) -> int:
        """
        Send an alert to its recipients.

        Returns:
            Number of recipients the alert was delivered to
        """
        recipients = await self._subscriptions.recipients_for(alert.validator_id)
        if not recipients:
            recipients = set(self._config.default_recipients)
        if not recipients:
            logger.debug(f"No recipients for alert {alert.id} ({alert.validator_id})")
            return 0

        delivered = 0
        for recipient_id in sorted(recipients):
            if await self._send(recipient_id, self._sender.send_alert, alert):
                delivered += 1
        return delivered

    async def broadcast(self, text: str) -> int:
        """Send free text to every global subscriber."""
        delivered = 0
        for recipient_id in sorted(await self._subscriptions.global_recipients()):
            if await self._send(recipient_id, self._sender.send_text, text):
                delivered += 1
        logger.info(f"Broadcast delivered to {delivered} recipients")
        return delivered

    async def _send(self, recipient_id: int, send, payload) -> bool:
        try:
            if not await self._rate_limiter.acquire(recipient_id):
                return False
            await send(recipient_id, payload)
            return True
        except MonitorError as e:
            logger.error(f"Failed to deliver to {recipient_id}: {e.message}")
            return False

    # --------------------------------------------------------
    # LISTENER
    # --------------------------------------------------------

    async def listen(self, shutdown: asyncio.Event) -> None:
        """
        Deliver alerts from the channel until shutdown is set.

        The idle tick only drives liveness logging and the
        shutdown check. Cache failures are scoped to the message
        being handled; a failed channel read backs off for one tick.
        """
        logger.info(f"Alert listener subscribed to {self._config.channel}")
        async with self._cache.subscribe(self._config.channel) as subscription:
            while not shutdown.is_set():
                try:
                    payload = await subscription.next_message(timeout=self._config.idle_tick_seconds)
                except MonitorError as e:
                    logger.error(f"Failed to read alert channel: {e.message}")
                    await _wait_or_shutdown(shutdown, self._config.idle_tick_seconds)
                    continue

                if payload is None:
                    logger.debug("No messages in alert channel, waiting...")
                    continue

                try:
                    alert = Alert.from_dict(decode_json(payload))
                except (ValueError, KeyError, TypeError) as e:
                    logger.error(f"Failed to decode alert payload: {e}")
                    continue

                try:
                    await self.deliver(alert)
                except MonitorError as e:
                    logger.error(f"Failed to deliver alert {alert.id}: {e.message}")

        logger.info("Alert listener stopped")


async def _wait_or_shutdown(shutdown: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
