"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Runtime modes and worker bookkeeping for the process runtime.

============================================================
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================
# RUNTIME MODES
# ============================================================

class RuntimeMode(Enum):
    """
    Runtime execution modes.
    """

    LIVE = "live"
    """Poll the source, track status, deliver alerts and serve the API."""

    BATCH = "batch"
    """Backfill a range of historical cycles, then exit. No alerts."""


# ============================================================
# WORKERS
# ============================================================

class WorkerStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class WorkerState:
    """Lifecycle record of one long-lived worker task."""
    name: str
    status: WorkerStatus = WorkerStatus.PENDING
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "error": self.error,
        }
