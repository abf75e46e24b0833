"""
Telegram Notification Handler.

============================================================
PURPOSE
============================================================
Deliver validator alerts and announcements through the
Telegram Bot API.

PRINCIPLES:
- One message per recipient per call; rate limiting is done
  by the dispatcher
- NOT_OK alerts carry an inline "Acknowledge" button
- API failures raise DeliveryError

============================================================
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from core.exceptions import DeliveryError
from storage.types import ValidatorStatus

from ..alerts.dispatcher import MessageSender
from ..models import Alert


logger = logging.getLogger(__name__)

ACK_CALLBACK_PREFIX = "ack_"
DETAILS_WINDOW_SECONDS = 3600


# ============================================================
# TELEGRAM MESSAGE FORMATTER
# ============================================================

class TelegramFormatter:
    """
    Formats alerts for Telegram.

    Plain text; no parse mode needed.
    """

    STATUS_ICONS = {
        ValidatorStatus.OK: "✅",
        ValidatorStatus.NOT_OK: "❌",
    }

    def __init__(self, link_host: str = ""):
        self._link_host = link_host

    def format_alert(self, alert: Alert) -> str:
        icon = self.STATUS_ICONS.get(alert.status, "✅")
        time_str = alert.emitted_at.strftime("%Y-%m-%d %H:%M:%S")

        lines = [
            f"{icon} {time_str}",
            f"Validator {alert.validator_id} is now {alert.status.value}",
        ]

        if alert.previous_status not in (ValidatorStatus.UNKNOWN, None):
            hours, minutes = divmod(alert.previous_duration_seconds // 60, 60)
            lines.append(
                f"Previous state {alert.previous_status.value}, duration: {hours}h {minutes} min."
            )

        if self._link_host:
            ts = alert.emitted_ts
            lines.append("")
            lines.append(
                f"Check details at: https://{self._link_host}/"
                f"?adnl={alert.validator_id}&from={ts}&to={ts + DETAILS_WINDOW_SECONDS}"
            )

        return "\n".join(lines)

    @staticmethod
    def ack_keyboard(alert: Alert) -> Optional[Dict[str, Any]]:
        if alert.status != ValidatorStatus.NOT_OK:
            return None
        return {
            "inline_keyboard": [[
                {"text": "Acknowledge", "callback_data": f"{ACK_CALLBACK_PREFIX}{alert.id}"},
            ]]
        }

    @staticmethod
    def format_acknowledged(username: str, user_id: int, at: datetime) -> str:
        return f"[{at.strftime('%Y-%m-%d %H:%M:%S')}] 🚑 Acknowledged by {username} (id {user_id})"


# ============================================================
# TELEGRAM NOTIFIER
# ============================================================

class TelegramNotifier(MessageSender):
    """
    Telegram Bot API client.

    Sends alerts and text, and exposes the update polling calls
    used by the command handler.
    """

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: str,
        formatter: Optional[TelegramFormatter] = None,
        request_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            formatter: Alert formatter
            request_timeout: Total timeout per API call (seconds)
            session: Optional shared HTTP session
        """
        self._bot_token = bot_token
        self._formatter = formatter or TelegramFormatter()
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = session

    @property
    def formatter(self) -> TelegramFormatter:
        return self._formatter

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # --------------------------------------------------------
    # BOT API
    # --------------------------------------------------------

    async def _call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        session = await self._get_session()
        url = f"{self.BASE_URL}{self._bot_token}/{method}"
        request_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None

        async with session.post(url, json=payload, timeout=request_timeout) as response:
            body = await response.json(content_type=None)
            if response.status != 200 or not body.get("ok"):
                description = body.get("description", "") if isinstance(body, dict) else ""
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=description or "Telegram API error",
                )
            return body.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup

        try:
            await self._call("sendMessage", payload)
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")
            raise DeliveryError(chat_id, str(e), cause=e)

    async def send_alert(self, recipient_id: int, alert: Alert) -> None:
        await self.send_message(
            recipient_id,
            self._formatter.format_alert(alert),
            reply_markup=self._formatter.ack_keyboard(alert),
        )

    async def send_text(self, recipient_id: int, text: str) -> None:
        await self.send_message(recipient_id, text)

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 10) -> List[Dict[str, Any]]:
        """Long-poll for updates."""
        payload: Dict[str, Any] = {
            "timeout": timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return await self._call("getUpdates", payload, timeout=timeout + 10) or []

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        try:
            await self._call("answerCallbackQuery", payload)
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(f"Failed to answer callback query: {e}")
