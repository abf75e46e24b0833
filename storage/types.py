"""
Storage - Type Definitions.

============================================================
PURPOSE
============================================================
Domain records shared by the store, the query service, the
status tracker and ingestion.

- Sample: one efficiency observation (immutable)
- StatusRecord: one entry of the append-only status log
- IntervalBucket: derived aggregate over a fixed-width window
- ValidatorMeta: fixed-field descriptive aggregate per entity
- GroupInfo / GroupMember: cycle reference data
- TimeRange: half-open [start, end) in Unix seconds

============================================================
IDENTIFIERS
============================================================
- entity_id: node address (adnl_addr). Read paths key by it.
- validator_id: validator address (validator_adnl). Status
  tracking, alerts and subscriptions key by it.
- group_id: cycle id.

============================================================
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


BUCKETS_PER_RANGE = 60


# =============================================================
# ENUMS
# =============================================================

class ValidatorStatus(str, Enum):
    """Health states. Values are the persisted strings."""
    OK = "ok"
    NOT_OK = "not ok"
    ACKNOWLEDGED = "acknowledged"
    UNKNOWN = "unknown"


# =============================================================
# TIME RANGE
# =============================================================

@dataclass(frozen=True)
class TimeRange:
    """Half-open interval [start, end) in Unix seconds."""
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def bucket_width(self) -> int:
        """Width that splits the range into at most 60 buckets."""
        return max(1, math.ceil(self.duration / BUCKETS_PER_RANGE))

    def bucket_starts(self, width: Optional[int] = None) -> List[int]:
        """Every bucket start from range start up to (excluding) range end."""
        width = width or self.bucket_width
        return list(range(self.start, self.end, width))


# =============================================================
# SAMPLES AND STATUS LOG
# =============================================================

@dataclass(frozen=True)
class Sample:
    """
    One efficiency observation.

    Uniquely identified by (validator_id, group_id, timestamp).
    """
    validator_id: str
    entity_id: str
    group_id: int
    timestamp: int
    efficiency: float
    stake: int = 0
    weight: int = 0
    ordinal_index: int = 0
    pubkey_hash: str = ""
    valid_since: int = 0
    valid_until: int = 0


@dataclass(frozen=True)
class StatusRecord:
    """Append-only status log entry."""
    group_key: str
    validator_id: str
    timestamp: int
    status: ValidatorStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "status": self.status.value}


# =============================================================
# AGGREGATES
# =============================================================

@dataclass(frozen=True)
class IntervalBucket:
    """
    Aggregate over one bucket for one entity and group.

    Gap-filled buckets have value None, group_id None and
    sample_count 0.
    """
    entity_id: str
    bucket_start: int
    value: Optional[float]
    group_id: Optional[int]
    sample_count: int = 0

    @property
    def is_filled_gap(self) -> bool:
        return self.sample_count == 0

    def to_point(self) -> Dict[str, Any]:
        """External chart point shape."""
        return {
            "timestamp": self.bucket_start,
            "value": self.value,
            "cycle_id": self.group_id,
        }


@dataclass(frozen=True)
class ValidatorMeta:
    """Descriptive aggregates for one entity over a range."""
    entity_id: str
    weight: str
    stake: str
    index: int
    wallet_address: str
    avg_efficiency: float
    group_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "index": self.index,
            "stake": self.stake,
            "wallet_address": self.wallet_address,
            "avg_efficiency": self.avg_efficiency,
            "cycle_id": self.group_id,
        }

    @classmethod
    def from_dict(cls, entity_id: str, data: Dict[str, Any]) -> "ValidatorMeta":
        return cls(
            entity_id=entity_id,
            weight=str(data["weight"]),
            stake=str(data["stake"]),
            index=int(data["index"]),
            wallet_address=data.get("wallet_address") or "",
            avg_efficiency=float(data["avg_efficiency"]),
            group_id=int(data["cycle_id"]),
        )


# =============================================================
# GROUP REFERENCE DATA
# =============================================================

@dataclass(frozen=True)
class GroupMember:
    """Entity reference row for one cycle."""
    entity_id: str
    pubkey: str = ""
    weight: int = 0
    index: int = 0
    stake: int = 0
    max_factor: int = 0
    wallet_address: str = ""


@dataclass(frozen=True)
class GroupInfo:
    """A cycle with its validity window, total weight and member list."""
    group_id: int
    valid_since: int = 0
    valid_until: int = 0
    total_weight: int = 0
    members: Tuple[GroupMember, ...] = field(default_factory=tuple)
