"""
Monitoring - Models.

============================================================
PURPOSE
============================================================
Alert record emitted by the status tracker and fanned out by
the alert dispatcher.

Alerts are retained indefinitely keyed by id. The only allowed
mutation is unacknowledged -> acknowledged.

============================================================
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from storage.types import ValidatorStatus


# ============================================================
# ALERT
# ============================================================

@dataclass
class Alert:
    """A status transition alert."""

    id: int
    validator_id: str
    group_key: str
    status: ValidatorStatus
    emitted_at: datetime

    # Transition context
    previous_status: ValidatorStatus = ValidatorStatus.UNKNOWN
    previous_status_since: Optional[datetime] = None
    efficiency: float = 0.0
    group_id: Optional[int] = None

    # Acknowledgment
    is_acknowledged: bool = False
    ack_by: Optional[int] = None
    ack_by_username: Optional[str] = None

    @property
    def previous_duration_seconds(self) -> int:
        """How long the previous state lasted."""
        if self.previous_status_since is None:
            return 0
        return max(0, int((self.emitted_at - self.previous_status_since).total_seconds()))

    @property
    def emitted_ts(self) -> int:
        return int(self.emitted_at.timestamp())

    def acknowledge(self, ack_by: int, username: Optional[str] = None) -> None:
        self.is_acknowledged = True
        self.ack_by = ack_by
        self.ack_by_username = username

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "validator_id": self.validator_id,
            "group_key": self.group_key,
            "group_id": self.group_id,
            "status": self.status.value,
            "is_acknowledged": self.is_acknowledged,
            "ack_by": self.ack_by,
            "ack_by_username": self.ack_by_username,
            "previous_status": self.previous_status.value,
            "previous_status_since": (
                self.previous_status_since.isoformat() if self.previous_status_since else None
            ),
            "efficiency": self.efficiency,
            "emitted_at": self.emitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        since = data.get("previous_status_since")
        return cls(
            id=int(data["id"]),
            validator_id=data["validator_id"],
            group_key=data.get("group_key", ""),
            group_id=data.get("group_id"),
            status=ValidatorStatus(data["status"]),
            emitted_at=datetime.fromisoformat(data["emitted_at"]),
            previous_status=ValidatorStatus(data.get("previous_status", ValidatorStatus.UNKNOWN.value)),
            previous_status_since=datetime.fromisoformat(since) if since else None,
            efficiency=float(data.get("efficiency", 0.0)),
            is_acknowledged=bool(data.get("is_acknowledged", False)),
            ack_by=data.get("ack_by"),
            ack_by_username=data.get("ack_by_username"),
        )
