"""
Collectors Package.

Source clients for the ingestion layer.
"""

from .scoreboard import ScoreboardClient


__all__ = ["ScoreboardClient"]
