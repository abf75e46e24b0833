"""
Data Ingestion Package.

Pulls cycle scoreboards from the external source into the
time-series store.

Modules:
- collectors/scoreboard: HTTP client for cycles and scoreboards
- ingestion_service: polling and batch workers
- types: source records and ingestion results
"""

from .ingestion_service import IngestionService
from .types import IngestionResult, IngestionStatus, ScoreboardRow


__all__ = [
    "IngestionService",
    "IngestionResult",
    "IngestionStatus",
    "ScoreboardRow",
]
