"""
Orchestrator Package - Process Runtime.

============================================================
PACKAGE OVERVIEW
============================================================
Single entry point that controls startup, shutdown and the
long-lived workers of the monitor.

    +-----------------------------------------------------+
    |                      Runtime                        |
    |-----------------------------------------------------|
    |  RuntimeMode  |  live / batch                       |
    |  Workers      |  ingestion, alert listener, API,    |
    |               |  bot command polling                |
    |  CLI          |  argparse front end                 |
    +-----------------------------------------------------+

============================================================
"""

from orchestrator.models import RuntimeMode, WorkerState, WorkerStatus
from orchestrator.runtime import Runtime


__all__ = [
    "RuntimeMode",
    "Runtime",
    "WorkerState",
    "WorkerStatus",
]
