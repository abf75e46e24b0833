"""
Orchestrator - CLI.

============================================================
USAGE
============================================================
python app.py                                   # live mode
python app.py --mode batch --batch-start 100 --batch-finish 500000
python app.py --env-file .env.production --log-level DEBUG

============================================================
"""

import argparse
import dataclasses
from typing import List, Optional

from core.config import AppConfig

from .models import RuntimeMode


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="validators-health",
        description="Validator efficiency monitor: ingestion, status alerts and read API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Runtime Modes:
  live   - Poll scoreboards, track status, deliver alerts, serve the API
  batch  - Backfill a cycle range without status checks, then exit
        """,
    )

    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=[m.value for m in RuntimeMode],
        default=None,
        help="Runtime mode (default: batch when a batch range is configured, else live)",
    )

    # --------------------------------------------------------
    # Batch Options
    # --------------------------------------------------------
    batch_group = parser.add_argument_group("Batch Options")

    batch_group.add_argument(
        "--batch-start",
        type=int,
        metavar="CYCLE_ID",
        help="First cycle id to backfill (overrides BATCH_SCRAPPING_START_CYCLE_ID)",
    )

    batch_group.add_argument(
        "--batch-finish",
        type=int,
        metavar="CYCLE_ID",
        help="Last cycle id to backfill (overrides BATCH_SCRAPPING_FINISH_CYCLE_ID)",
    )

    # --------------------------------------------------------
    # Environment Options
    # --------------------------------------------------------
    env_group = parser.add_argument_group("Environment Options")

    env_group.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a .env file (default: .env in the working directory)",
    )

    env_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line batch overrides on top of the env configuration."""
    ingestion = config.ingestion
    if args.batch_start is not None:
        ingestion = dataclasses.replace(ingestion, batch_start_group_id=args.batch_start)
    if args.batch_finish is not None:
        ingestion = dataclasses.replace(ingestion, batch_finish_group_id=args.batch_finish)
    return dataclasses.replace(config, ingestion=ingestion)


def resolve_mode(config: AppConfig, args: argparse.Namespace) -> RuntimeMode:
    if args.mode:
        return RuntimeMode(args.mode)
    return RuntimeMode.BATCH if config.ingestion.batch_mode else RuntimeMode.LIVE


def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate argument combinations; returns error messages."""
    errors: List[str] = []
    if args.batch_start is not None and args.batch_start <= 0:
        errors.append("--batch-start must be positive")
    if (
        args.batch_start is not None
        and args.batch_finish is not None
        and args.batch_finish < args.batch_start
    ):
        errors.append("--batch-finish must not be lower than --batch-start")
    return errors


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return create_parser().parse_args(argv)
