"""
Core Module Package.

Infrastructure shared by every other package.

Components:
- clock: Unified time abstraction
- config: Environment-driven configuration
- exceptions: Custom exception hierarchy
- logging_setup: Process logging configuration
- retry: Connect-with-backoff helper
"""

from .clock import ClockProtocol, MockClock, SystemClock
from .config import AppConfig, RetryConfig
from .exceptions import (
    AlertNotFoundError,
    CacheError,
    ConfigurationError,
    ConnectionFailedError,
    DeliveryError,
    DependencyError,
    InvalidQueryError,
    MonitorError,
    SourceFetchError,
    StoreError,
)
from .retry import connect_with_backoff


__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "AppConfig",
    "RetryConfig",
    "AlertNotFoundError",
    "CacheError",
    "ConfigurationError",
    "ConnectionFailedError",
    "DeliveryError",
    "DependencyError",
    "InvalidQueryError",
    "MonitorError",
    "SourceFetchError",
    "StoreError",
    "connect_with_backoff",
]
