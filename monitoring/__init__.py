"""
Monitoring Package.

Read paths, status detection and alert fan-out for the validator
monitor.

Modules:
- aggregation: AggregationQueryService (cache-aside reads)
- status_tracker: StatusTracker (edge-triggered transitions)
- models: Alert record
- alerts/: dispatcher, subscriptions, rate limiting
- notifications/: Telegram delivery and commands
"""

from .aggregation import AggregationQueryService, normalize_range
from .models import Alert
from .status_tracker import StatusTracker


__all__ = [
    "AggregationQueryService",
    "normalize_range",
    "Alert",
    "StatusTracker",
]
