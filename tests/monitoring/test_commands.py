"""
Tests for Telegram formatting, delivery errors and bot commands.
"""

from datetime import datetime, timezone

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import DeliveryError
from monitoring.models import Alert
from monitoring.notifications import TelegramCommandHandler, TelegramFormatter, TelegramNotifier
from storage.types import ValidatorStatus

from fakes import NODE_A, VALIDATOR_A, make_sample


def make_alert(status: ValidatorStatus = ValidatorStatus.NOT_OK) -> Alert:
    return Alert(
        id=12,
        validator_id=VALIDATOR_A,
        group_key=NODE_A,
        status=status,
        emitted_at=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        previous_status=ValidatorStatus.OK,
        previous_status_since=datetime(2024, 6, 1, 9, 45, tzinfo=timezone.utc),
    )


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_text = AsyncMock()
    mock.answer_callback_query = AsyncMock()
    mock.get_updates = AsyncMock(return_value=[])
    mock.formatter = TelegramFormatter()
    return mock


@pytest.fixture
def handler(notifier, dispatcher, tracker, clock):
    return TelegramCommandHandler(notifier, dispatcher, tracker, clock, admin_chat_ids=[1])


def replies(notifier):
    return [c.args for c in notifier.send_text.await_args_list]


# ============================================================
# FORMATTER
# ============================================================

class TestTelegramFormatter:
    """Tests for TelegramFormatter."""

    def test_format_alert(self):
        text = TelegramFormatter("monitor.example").format_alert(make_alert())
        ts = 1717243200

        assert text.splitlines()[0] == "❌ 2024-06-01 12:00:00"
        assert f"Validator {VALIDATOR_A} is now not ok" in text
        assert "Previous state ok, duration: 2h 15 min." in text
        assert f"https://monitor.example/?adnl={VALIDATOR_A}&from={ts}&to={ts + 3600}" in text

    def test_no_link_without_host(self):
        assert "Check details" not in TelegramFormatter().format_alert(make_alert())

    def test_ack_button_only_for_not_ok(self):
        keyboard = TelegramFormatter.ack_keyboard(make_alert())
        assert keyboard["inline_keyboard"][0][0]["callback_data"] == "ack_12"
        assert TelegramFormatter.ack_keyboard(make_alert(ValidatorStatus.OK)) is None


class TestTelegramNotifier:
    """Tests for TelegramNotifier error mapping."""

    @pytest.mark.asyncio
    async def test_api_failure_raises_delivery_error(self):
        notifier = TelegramNotifier("token")
        notifier._call = AsyncMock(side_effect=aiohttp.ClientError("403 Forbidden"))

        with pytest.raises(DeliveryError) as exc_info:
            await notifier.send_alert(42, make_alert())

        assert exc_info.value.recipient_id == 42

    @pytest.mark.asyncio
    async def test_alert_carries_keyboard(self):
        notifier = TelegramNotifier("token")
        notifier._call = AsyncMock(return_value={})

        await notifier.send_alert(42, make_alert())

        method, payload = notifier._call.await_args.args
        assert method == "sendMessage"
        assert payload["chat_id"] == 42
        assert payload["reply_markup"]["inline_keyboard"][0][0]["text"] == "Acknowledge"


# ============================================================
# COMMANDS
# ============================================================

class TestCommands:
    """Tests for TelegramCommandHandler."""

    @pytest.mark.asyncio
    async def test_add_subscribes(self, handler, notifier, subscriptions):
        await handler.handle_text(5, f"/add {VALIDATOR_A}")

        assert await subscriptions.recipients_for(VALIDATOR_A) == {5}
        assert replies(notifier) == [(5, f"Subscribed to alerts for ADNL: {VALIDATOR_A}")]

    @pytest.mark.asyncio
    async def test_add_rejects_bad_address(self, handler, notifier, subscriptions):
        await handler.handle_text(5, "/add abc123")

        assert await subscriptions.global_recipients() == set()
        assert replies(notifier)[0][1].startswith("Invalid ADNL format")

    @pytest.mark.asyncio
    async def test_add_without_argument(self, handler, notifier):
        await handler.handle_text(5, "/add")
        assert replies(notifier) == [(5, "Usage: /add <ADNL>")]

    @pytest.mark.asyncio
    async def test_deep_link_and_bot_suffix(self, handler, subscriptions):
        await handler.handle_text(5, f"/start add_{VALIDATOR_A}")
        await handler.handle_text(6, f"/add@validators_bot {VALIDATOR_A}")

        assert await subscriptions.recipients_for(VALIDATOR_A) == {5, 6}

    @pytest.mark.asyncio
    async def test_del_unsubscribes(self, handler, notifier, subscriptions):
        await subscriptions.subscribe(VALIDATOR_A, 5)

        await handler.handle_text(5, f"/del {VALIDATOR_A}")

        assert await subscriptions.global_recipients() == set()
        assert replies(notifier)[-1] == (5, f"Unsubscribed from alerts for ADNL: {VALIDATOR_A}")

    @pytest.mark.asyncio
    async def test_announce_requires_admin(self, handler, notifier, sender):
        await handler.handle_text(5, "/announce hello")

        assert replies(notifier) == [(5, "You are not authorized to use this command.")]
        assert sender.texts == []

    @pytest.mark.asyncio
    async def test_announce_broadcasts(self, handler, subscriptions, sender):
        await subscriptions.subscribe(VALIDATOR_A, 5)

        await handler.handle_text(1, "/announce upgrade tonight")

        assert sender.texts == [(5, "📢 Announcement:\n\nupgrade tonight")]

    @pytest.mark.asyncio
    async def test_unknown_command_gets_help(self, handler, notifier):
        await handler.handle_text(5, "hello")
        assert replies(notifier)[0][1].startswith("Unknown command.")

    @pytest.mark.asyncio
    async def test_ack_callback(self, handler, notifier, tracker, dispatcher):
        alert = await tracker.check(make_sample(0.2))

        await handler.handle_update({
            "update_id": 1,
            "callback_query": {
                "id": "cb1",
                "data": f"ack_{alert.id}",
                "from": {"id": 77, "username": "ops"},
                "message": {"chat": {"id": 5}},
            },
        })

        assert (await dispatcher.get_alert(alert.id)).ack_by == 77
        notifier.answer_callback_query.assert_awaited_once_with("cb1")
        assert "Acknowledged by ops" in replies(notifier)[-1][1]

    @pytest.mark.asyncio
    async def test_ack_unknown_alert(self, handler, notifier):
        await handler.handle_callback({
            "id": "cb2",
            "data": "ack_404",
            "from": {"id": 77},
            "message": {"chat": {"id": 5}},
        })

        assert replies(notifier) == [(5, "No such alert.")]
        notifier.answer_callback_query.assert_awaited_once_with("cb2")

    @pytest.mark.asyncio
    async def test_poll_once_advances_offset(self, handler, notifier, subscriptions):
        notifier.get_updates = AsyncMock(side_effect=[
            [{"update_id": 10, "message": {"chat": {"id": 5}, "text": f"/add {VALIDATOR_A}"}}],
            [],
        ])

        assert await handler.poll_once() == 1
        await handler.poll_once()

        assert notifier.get_updates.await_args_list[1].args[0] == 11
        assert await subscriptions.recipients_for(VALIDATOR_A) == {5}
