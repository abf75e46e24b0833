#!/usr/bin/env python3
"""
Validators Health - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the monitor.

- Compatible with PM2 / systemd process management
- Handles SIGINT and SIGTERM gracefully
- Wires all components into one runtime

============================================================
USAGE
============================================================
Direct execution:
    python app.py

Backfill:
    python app.py --mode batch --batch-start 100 --batch-finish 500000

With PM2:
    pm2 start app.py --interpreter python --name validators-health

============================================================
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.config import AppConfig
from core.exceptions import ConfigurationError, ConnectionFailedError
from core.logging_setup import setup_logging
from orchestrator.cli import apply_overrides, parse_args, resolve_mode, validate_args
from orchestrator.runtime import Runtime


logger = logging.getLogger(__name__)


# ============================================================
# SIGNALS
# ============================================================

def install_signal_handlers(shutdown: asyncio.Event) -> None:
    """Set the shared shutdown event on SIGINT / SIGTERM."""

    def _request_shutdown(signame: str) -> None:
        logger.info(f"Received signal {signame}, shutting down...")
        shutdown.set()

    if sys.platform == "win32":
        loop = asyncio.get_running_loop()
        # Windows has no loop signal handlers
        signal.signal(
            signal.SIGINT,
            lambda signum, frame: loop.call_soon_threadsafe(_request_shutdown, "SIGINT"),
        )
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown, sig.name)


# ============================================================
# APPLICATION
# ============================================================

async def run_application(config: AppConfig, args) -> int:
    """Start the runtime and run it until shutdown."""
    shutdown = asyncio.Event()
    install_signal_handlers(shutdown)

    runtime = Runtime(config, mode=resolve_mode(config, args))
    try:
        await runtime.start()
    except ConnectionFailedError as e:
        logger.critical(f"Startup failed: {e.message}")
        await runtime.stop()
        return 1

    try:
        return await runtime.run(shutdown)
    finally:
        await runtime.stop()


def main() -> int:
    """Main entry point."""
    args = parse_args()

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = apply_overrides(AppConfig.from_env(args.env_file), args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(args.log_level)
    return asyncio.run(run_application(config, args))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
