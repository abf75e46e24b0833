"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the ingestion layer.

- Source payload parsing (cycles, scoreboard rows)
- Ingestion result types

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures where possible
- No business logic
- Serializable for monitoring

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.exceptions import SourceFetchError
from storage.types import GroupInfo, GroupMember, Sample


# =============================================================
# ENUMS
# =============================================================

class IngestionStatus(str, Enum):
    """Status of an ingestion pass or group."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================
# SOURCE RECORDS
# =============================================================

@dataclass(frozen=True)
class ScoreboardRow:
    """One row of a cycle scoreboard."""
    group_id: int
    entity_id: str
    validator_id: str
    pubkey: str
    pubkey_hash: str
    weight: int
    index: int
    stake: int
    efficiency: float
    valid_since: int
    valid_until: int

    def to_sample(self, timestamp: int) -> Sample:
        return Sample(
            validator_id=self.validator_id,
            entity_id=self.entity_id,
            group_id=self.group_id,
            timestamp=timestamp,
            efficiency=self.efficiency,
            stake=self.stake,
            weight=self.weight,
            ordinal_index=self.index,
            pubkey_hash=self.pubkey_hash,
            valid_since=self.valid_since,
            valid_until=self.valid_until,
        )


def parse_scoreboard_row(raw: Dict[str, Any]) -> ScoreboardRow:
    """Parse a scoreboard row; raises SourceFetchError when malformed."""
    try:
        return ScoreboardRow(
            group_id=int(raw["cycle_id"]),
            entity_id=str(raw["adnl_addr"]),
            validator_id=str(raw.get("validator_adnl") or raw["adnl_addr"]),
            pubkey=str(raw.get("pubkey", "")),
            pubkey_hash=str(raw.get("pubkey_hash", "")),
            weight=int(raw.get("weight", 0)),
            index=int(raw.get("idx", 0)),
            stake=int(raw.get("stake", 0)),
            efficiency=float(raw["efficiency"]),
            valid_since=int(raw.get("utime_since", 0)),
            valid_until=int(raw.get("utime_until", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SourceFetchError(f"Malformed scoreboard row: {e}", cause=e)


def parse_group(raw: Dict[str, Any]) -> GroupInfo:
    """Parse a cycle with its info block and validator list."""
    try:
        info = raw.get("cycle_info") or {}
        members = tuple(
            GroupMember(
                entity_id=str(v["adnl_addr"]),
                pubkey=str(v.get("pubkey", "")),
                weight=int(v.get("weight", 0)),
                index=int(v.get("index", 0)),
                stake=int(v.get("stake", 0)),
                max_factor=int(v.get("max_factor", 0)),
                wallet_address=str(v.get("wallet_address", "")),
            )
            for v in info.get("validators") or []
        )
        return GroupInfo(
            group_id=int(raw["cycle_id"]),
            valid_since=int(info.get("utime_since", 0)),
            valid_until=int(info.get("utime_until", 0)),
            total_weight=int(info.get("total_weight", 0)),
            members=members,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SourceFetchError(f"Malformed cycle record: {e}", cause=e)


# =============================================================
# RESULT TYPES
# =============================================================

@dataclass
class GroupResult:
    """Outcome of processing one group."""
    group_id: int
    status: IngestionStatus = IngestionStatus.SUCCESS
    rows_fetched: int = 0
    samples_stored: int = 0
    alerts_emitted: int = 0
    error: Optional[str] = None


@dataclass
class IngestionResult:
    """Result of one ingestion pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    groups: List[GroupResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def status(self) -> IngestionStatus:
        if self.error is not None:
            return IngestionStatus.FAILED
        if not self.groups:
            return IngestionStatus.SKIPPED
        failed = sum(1 for g in self.groups if g.status == IngestionStatus.FAILED)
        if failed == 0:
            return IngestionStatus.SUCCESS
        if failed == len(self.groups):
            return IngestionStatus.FAILED
        return IngestionStatus.PARTIAL

    @property
    def samples_stored(self) -> int:
        return sum(g.samples_stored for g in self.groups)

    @property
    def alerts_emitted(self) -> int:
        return sum(g.alerts_emitted for g in self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "groups": len(self.groups),
            "samples_stored": self.samples_stored,
            "alerts_emitted": self.alerts_emitted,
            "error": self.error,
        }
