"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the validator monitor.

- Provides clear exception hierarchy
- Separates client input errors from server-side failures
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
MonitorError (base)
├── ConfigurationError
├── InvalidQueryError
├── DependencyError
│   ├── ConnectionFailedError
│   ├── StoreError
│   └── CacheError
├── SourceFetchError
├── AlertNotFoundError
└── DeliveryError

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# BASE EXCEPTION
# ============================================================

class MonitorError(Exception):
    """
    Base exception for all validator monitor errors.

    All exceptions carry:
    - context: for debugging
    - cause: the wrapped lower-level exception, if any
    - timestamp: when the error occurred
    """

    is_client_error: bool = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "client_error": self.is_client_error,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# CONFIGURATION / INPUT ERRORS
# ============================================================

class ConfigurationError(MonitorError):
    """Error in configuration."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            context={"config_key": key, "actual_value": str(value)[:100]},
        )


class InvalidQueryError(MonitorError):
    """
    Query input rejected before touching store or cache.

    Covers unparseable ranges and non-positive durations.
    """

    is_client_error = True


# ============================================================
# DEPENDENCY ERRORS
# ============================================================

class DependencyError(MonitorError):
    """Base class for store/cache failures (server-side)."""


class ConnectionFailedError(DependencyError):
    """Connect retries exhausted for a dependency."""

    def __init__(self, dependency: str, attempts: int, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Could not connect to {dependency} after {attempts} attempts",
            context={"dependency": dependency, "attempts": attempts},
            cause=cause,
        )
        self.dependency = dependency
        self.attempts = attempts


class StoreError(DependencyError):
    """Time-series store query or insert failed."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Store operation failed: {operation}",
            context={"operation": operation},
            cause=cause,
        )
        self.operation = operation


class CacheError(DependencyError):
    """Cache read, write or payload decoding failed."""

    def __init__(self, operation: str, key: Optional[str] = None, cause: Optional[Exception] = None):
        context = {"operation": operation}
        if key:
            context["key"] = key
        super().__init__(
            message=f"Cache operation failed: {operation}",
            context=context,
            cause=cause,
        )
        self.operation = operation
        self.key = key


# ============================================================
# INGESTION / ALERTING ERRORS
# ============================================================

class SourceFetchError(MonitorError):
    """Scoreboard source returned an error or unreadable body."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        context: Dict[str, Any] = {}
        if endpoint:
            context["endpoint"] = endpoint
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context, cause=cause)
        self.status_code = status_code


class AlertNotFoundError(MonitorError):
    """Acknowledgment referenced an unknown alert id."""

    is_client_error = True

    def __init__(self, alert_id: int):
        super().__init__(f"No such alert: {alert_id}", context={"alert_id": alert_id})
        self.alert_id = alert_id


class DeliveryError(MonitorError):
    """Message delivery to a single recipient failed."""

    def __init__(self, recipient_id: int, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Delivery to {recipient_id} failed: {reason}",
            context={"recipient_id": recipient_id},
            cause=cause,
        )
        self.recipient_id = recipient_id


__all__ = [
    "MonitorError",
    "ConfigurationError",
    "InvalidQueryError",
    "DependencyError",
    "ConnectionFailedError",
    "StoreError",
    "CacheError",
    "SourceFetchError",
    "AlertNotFoundError",
    "DeliveryError",
]
