"""
Notifications Package.

Telegram delivery and chat commands.
"""

from .commands import TelegramCommandHandler
from .telegram import TelegramFormatter, TelegramNotifier


__all__ = [
    "TelegramCommandHandler",
    "TelegramFormatter",
    "TelegramNotifier",
]
