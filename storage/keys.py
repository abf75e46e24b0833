"""
Storage - Cache Key Builders.

Keys are stable across restarts:
``{query-type}:{entity-or-list}:{range-start}:{range-end}[:{group-id}]``.
Range bounds must already be rounded by the caller.
"""

from typing import Optional

from .types import TimeRange


EFFICIENCY_CHART = "EfficiencyChart"
VALIDATOR_LIST = "ValidatorList"
VALIDATOR_STATUS = "ValidatorStatus"
VALIDATOR_META = "ValidatorMeta"
STATUS_HISTORY = "StatusHistory"

ALL_ENTITIES = "all"

ALERT_COUNTER_KEY = "alert_id"
GLOBAL_SUBSCRIBERS_KEY = "global_subscribers"
SUBSCRIPTION_PREFIX = "subscription_"


def _range_key(query_type: str, subject: str, time_range: TimeRange, group_id: Optional[int] = None) -> str:
    key = f"{query_type}:{subject}:{time_range.start}:{time_range.end}"
    if group_id:
        key += f":{group_id}"
    return key


def chart_key(entity_id: str, time_range: TimeRange) -> str:
    return _range_key(EFFICIENCY_CHART, entity_id, time_range)


def entity_list_key(time_range: TimeRange) -> str:
    return _range_key(VALIDATOR_LIST, ALL_ENTITIES, time_range)


def entity_status_key(entity_id: str, time_range: TimeRange, group_id: Optional[int] = None) -> str:
    return _range_key(VALIDATOR_STATUS, entity_id, time_range, group_id)


def meta_key(time_range: TimeRange, group_id: Optional[int] = None) -> str:
    return _range_key(VALIDATOR_META, ALL_ENTITIES, time_range, group_id)


def status_history_key(entity_id: str, limit: int) -> str:
    return f"{STATUS_HISTORY}:{entity_id}:{limit}"


def tracked_status_key(validator_id: str) -> str:
    """Current OK/NOT_OK state of a validator. Never expires."""
    return f"validator_status:{validator_id}"


def alert_key(alert_id: int) -> str:
    return f"alert_{alert_id}"


def subscription_key(validator_id: str) -> str:
    return f"{SUBSCRIPTION_PREFIX}{validator_id}"


def rate_limit_key(recipient_id: int, minute: int) -> str:
    """Per-recipient counter for one wall-clock minute."""
    return f"rate_limit_{recipient_id}_{minute}"
