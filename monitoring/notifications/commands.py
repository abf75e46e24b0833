"""
Telegram Command Handler.

============================================================
PURPOSE
============================================================
Chat commands for managing alert subscriptions.

COMMANDS:
- /add <ADDR>          subscribe to a validator
- /del <ADDR>          unsubscribe
- /announce <text>     admins only; sent to every subscriber
- /start add_<ADDR>    deep link equivalent of /add
- ack_<id> callback    acknowledge an alert

Addresses are 64 uppercase hex characters.

============================================================
"""

import asyncio
import logging
import re
from typing import Any, Dict, Iterable, Optional

import aiohttp

from core.clock import ClockProtocol
from core.exceptions import AlertNotFoundError, MonitorError

from ..alerts.dispatcher import AlertDispatcher
from ..status_tracker import StatusTracker
from .telegram import ACK_CALLBACK_PREFIX, TelegramNotifier


logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^[A-F0-9]{64}$")

HELP_TEXT = (
    "Unknown command. Available commands:\n"
    "/add <ADNL> - Subscribe to alerts\n"
    "/del <ADNL> - Unsubscribe from alerts"
)


class TelegramCommandHandler:
    """
    Routes bot updates to subscription and acknowledgment actions.
    """

    def __init__(
        self,
        notifier: TelegramNotifier,
        dispatcher: AlertDispatcher,
        tracker: StatusTracker,
        clock: ClockProtocol,
        admin_chat_ids: Iterable[int] = (),
        poll_timeout: int = 10,
    ):
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._subscriptions = dispatcher.subscriptions
        self._tracker = tracker
        self._clock = clock
        self._admin_chat_ids = set(admin_chat_ids)
        self._poll_timeout = poll_timeout
        self._offset: Optional[int] = None

    def is_admin(self, chat_id: int) -> bool:
        return chat_id in self._admin_chat_ids

    async def _reply(self, chat_id: int, text: str) -> None:
        try:
            await self._notifier.send_text(chat_id, text)
        except MonitorError as e:
            logger.error(f"Failed to reply to chat {chat_id}: {e.message}")

    # --------------------------------------------------------
    # UPDATE ROUTING
    # --------------------------------------------------------

    async def handle_update(self, update: Dict[str, Any]) -> None:
        if "callback_query" in update:
            await self.handle_callback(update["callback_query"])
            return

        message = update.get("message")
        if not message or not message.get("text"):
            return

        chat_id = message["chat"]["id"]
        await self.handle_text(chat_id, message["text"].strip())

    async def handle_text(self, chat_id: int, text: str) -> None:
        command, _, rest = text.partition(" ")
        # Commands may arrive as /add@botname in group chats
        command = command.split("@", 1)[0]
        rest = rest.strip()

        if command == "/add":
            await self.handle_add(chat_id, rest)
        elif command == "/del":
            await self.handle_del(chat_id, rest)
        elif command == "/announce":
            await self.handle_announce(chat_id, rest)
        elif command == "/start" and rest.startswith("add_"):
            await self.handle_add(chat_id, rest[len("add_"):])
        else:
            await self._reply(chat_id, HELP_TEXT)

    # --------------------------------------------------------
    # COMMANDS
    # --------------------------------------------------------

    async def handle_add(self, chat_id: int, argument: str) -> None:
        address = argument.split(" ", 1)[0] if argument else ""
        if not address:
            await self._reply(chat_id, "Usage: /add <ADNL>")
            return
        if not ADDRESS_PATTERN.match(address):
            await self._reply(
                chat_id,
                "Invalid ADNL format. ADNL must be a 64-character hex string (uppercase, A-F, 0-9).",
            )
            return

        try:
            await self._subscriptions.subscribe(address, chat_id)
        except MonitorError as e:
            logger.error(f"Failed to add subscription for {address}: {e.message}")
            await self._reply(chat_id, "Failed to subscribe to alerts.")
            return

        await self._reply(chat_id, f"Subscribed to alerts for ADNL: {address}")

    async def handle_del(self, chat_id: int, argument: str) -> None:
        address = argument.split(" ", 1)[0] if argument else ""
        if not address:
            await self._reply(chat_id, "Usage: /del <ADNL>")
            return

        try:
            await self._subscriptions.unsubscribe(address, chat_id)
        except MonitorError as e:
            logger.error(f"Failed to remove subscription for {address}: {e.message}")
            await self._reply(chat_id, "Failed to unsubscribe from alerts.")
            return

        await self._reply(chat_id, f"Unsubscribed from alerts for ADNL: {address}")

    async def handle_announce(self, chat_id: int, text: str) -> None:
        if not self.is_admin(chat_id):
            await self._reply(chat_id, "You are not authorized to use this command.")
            return
        if not text:
            await self._reply(chat_id, "Usage: /announce <message>")
            return

        try:
            sent = await self._dispatcher.broadcast(f"📢 Announcement:\n\n{text}")
        except MonitorError as e:
            logger.error(f"Failed to send announcement: {e.message}")
            await self._reply(chat_id, "Failed to send announcement.")
            return

        logger.info(f"Announcement sent to {sent} subscribers")

    async def handle_callback(self, callback: Dict[str, Any]) -> None:
        data = callback.get("data") or ""
        callback_id = callback.get("id")
        if not data.startswith(ACK_CALLBACK_PREFIX):
            return

        sender = callback.get("from") or {}
        user_id = sender.get("id", 0)
        username = sender.get("username") or "user"
        chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id")

        try:
            alert_id = int(data[len(ACK_CALLBACK_PREFIX):])
            await self._tracker.acknowledge(alert_id, user_id, username)
        except (ValueError, AlertNotFoundError):
            if chat_id is not None:
                await self._reply(chat_id, "No such alert.")
            return
        except MonitorError as e:
            logger.error(f"Failed to acknowledge {data}: {e.message}")
            return
        finally:
            if callback_id:
                await self._notifier.answer_callback_query(callback_id)

        if chat_id is not None:
            await self._reply(
                chat_id,
                self._notifier.formatter.format_acknowledged(username, user_id, self._clock.now()),
            )

    # --------------------------------------------------------
    # POLLING LOOP
    # --------------------------------------------------------

    async def poll_once(self) -> int:
        updates = await self._notifier.get_updates(self._offset, timeout=self._poll_timeout)
        for update in updates:
            self._offset = update["update_id"] + 1
            try:
                await self.handle_update(update)
            except MonitorError as e:
                logger.error(f"Failed to handle update {update.get('update_id')}: {e.message}")
        return len(updates)

    async def run_polling(self, shutdown: asyncio.Event, retry_delay: float = 5.0) -> None:
        """Poll for updates until shutdown is set."""
        logger.info("Telegram command polling started")
        while not shutdown.is_set():
            try:
                await self.poll_once()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(f"Telegram polling failed: {e}")
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=retry_delay)
                except asyncio.TimeoutError:
                    pass
        logger.info("Telegram command polling stopped")
