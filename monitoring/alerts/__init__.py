"""
Alerts Package.

Alert persistence, subscriptions and rate-limited delivery.
"""

from .dispatcher import AlertDispatcher, LogSender, MessageSender
from .rate_limiter import RecipientRateLimiter
from .subscriptions import SubscriptionRegistry


__all__ = [
    "AlertDispatcher",
    "LogSender",
    "MessageSender",
    "RecipientRateLimiter",
    "SubscriptionRegistry",
]
