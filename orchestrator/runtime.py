"""
Orchestrator - Runtime.

============================================================
RESPONSIBILITY
============================================================
Builds the shared handles once and runs the long-lived workers.

STARTUP:
1. Connect the database (bounded retries, fatal on exhaustion)
2. Connect the cache (bounded retries, fatal on exhaustion)
3. Wire store, query service, tracker, dispatcher, clients

WORKERS (live mode):
- ingestion      : scoreboard polling -> store -> status checks
- alert_listener : alert channel -> rate-limited delivery
- api            : read API (drains with a deadline on shutdown)
- bot_commands   : Telegram update polling (when configured)

All workers observe one shared asyncio.Event. On shutdown the
runtime waits up to the grace period, then cancels stragglers.

============================================================
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from core.clock import ClockProtocol, SystemClock
from core.config import AppConfig
from dashboard.api import create_app
from dashboard.server import ApiServer
from data_ingestion.collectors.scoreboard import ScoreboardClient
from data_ingestion.ingestion_service import IngestionService
from monitoring.aggregation import AggregationQueryService
from monitoring.alerts import (
    AlertDispatcher,
    LogSender,
    MessageSender,
    RecipientRateLimiter,
    SubscriptionRegistry,
)
from monitoring.notifications import TelegramCommandHandler, TelegramFormatter, TelegramNotifier
from monitoring.status_tracker import StatusTracker
from storage.cache import CacheLayer, connect_cache
from storage.database import connect_database, create_session_factory, create_tables
from storage.timeseries import TimeSeriesStore

from .models import RuntimeMode, WorkerState, WorkerStatus


logger = logging.getLogger(__name__)


class Runtime:
    """
    Process runtime: connections, wiring and worker lifecycle.
    """

    def __init__(
        self,
        config: AppConfig,
        mode: RuntimeMode = RuntimeMode.LIVE,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config
        self._mode = mode
        self._clock = clock or SystemClock()

        self._engine: Optional[AsyncEngine] = None
        self._cache: Optional[CacheLayer] = None
        self._notifier: Optional[TelegramNotifier] = None
        self._scoreboard: Optional[ScoreboardClient] = None

        self.store: Optional[TimeSeriesStore] = None
        self.query_service: Optional[AggregationQueryService] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.tracker: Optional[StatusTracker] = None
        self.ingestion: Optional[IngestionService] = None
        self.commands: Optional[TelegramCommandHandler] = None

        self._workers: Dict[str, WorkerState] = {}

    @property
    def mode(self) -> RuntimeMode:
        return self._mode

    @property
    def workers(self) -> List[WorkerState]:
        return list(self._workers.values())

    # --------------------------------------------------------
    # STARTUP
    # --------------------------------------------------------

    async def start(self) -> None:
        """Connect dependencies and wire components. Raises ConnectionFailedError."""
        config = self._config

        self._engine = await connect_database(config.database, config.retry)
        await create_tables(self._engine)
        self._cache = await connect_cache(config.redis, config.retry)

        self.store = TimeSeriesStore(create_session_factory(self._engine))
        self.query_service = AggregationQueryService(self.store, self._cache, self._clock, config.cache)

        sender: MessageSender
        if config.telegram.enabled:
            self._notifier = TelegramNotifier(
                config.telegram.api_key,
                formatter=TelegramFormatter(config.alerts.link_host),
                request_timeout=config.telegram.request_timeout_seconds,
            )
            sender = self._notifier
        else:
            logger.warning("TELEGRAM_API_KEY is not set, alerts will only be logged")
            sender = LogSender()

        rate_limiter = RecipientRateLimiter(
            self._cache, self._clock, config.alerts.max_messages_per_minute
        )
        self.dispatcher = AlertDispatcher(
            self._cache, SubscriptionRegistry(self._cache), rate_limiter, sender, config.alerts
        )
        self.tracker = StatusTracker(
            self.store, self._cache, self.dispatcher, self._clock, config.tracker
        )

        self._scoreboard = ScoreboardClient(config.ingestion)
        self.ingestion = IngestionService(
            self._scoreboard, self.store, self.tracker, self._clock, config.ingestion
        )

        if self._notifier is not None:
            self.commands = TelegramCommandHandler(
                self._notifier,
                self.dispatcher,
                self.tracker,
                self._clock,
                admin_chat_ids=config.alerts.admin_chat_ids,
                poll_timeout=config.telegram.poll_timeout_seconds,
            )

        logger.info(f"Runtime started in {self._mode.value} mode")

    async def stop(self) -> None:
        """Release clients and connections."""
        if self._scoreboard is not None:
            await self._scoreboard.close()
        if self._notifier is not None:
            await self._notifier.close()
        if self._cache is not None:
            await self._cache.close()
        if self._engine is not None:
            await self._engine.dispose()
        logger.info("Runtime stopped")

    # --------------------------------------------------------
    # RUN
    # --------------------------------------------------------

    async def run(self, shutdown: asyncio.Event) -> int:
        """
        Run until shutdown (live) or until the backfill finishes (batch).

        Returns:
            Process exit code
        """
        if self._mode == RuntimeMode.BATCH:
            return await self._run_batch(shutdown)
        return await self._run_workers(shutdown)

    async def _run_batch(self, shutdown: asyncio.Event) -> int:
        ingestion_config = self._config.ingestion
        if not ingestion_config.batch_mode:
            logger.error("Batch mode requires BATCH_SCRAPPING_START_CYCLE_ID and BATCH_SCRAPPING_FINISH_CYCLE_ID")
            return 1

        results = await self.ingestion.run_batch(
            ingestion_config.batch_start_group_id,
            ingestion_config.batch_finish_group_id,
            shutdown,
        )
        stored = sum(r.samples_stored for r in results)
        logger.info(f"Batch finished: {len(results)} windows, {stored} samples stored")
        return 0

    async def _run_workers(self, shutdown: asyncio.Event) -> int:
        server = ApiServer(create_app(self.query_service), self._config.api)

        workers: Dict[str, Callable[[asyncio.Event], Awaitable[None]]] = {
            "ingestion": self.ingestion.run,
            "alert_listener": self.dispatcher.listen,
            "api": server.serve,
        }
        if self.commands is not None:
            workers["bot_commands"] = self.commands.run_polling

        tasks = [
            asyncio.create_task(self._supervise(name, worker, shutdown), name=name)
            for name, worker in workers.items()
        ]

        await shutdown.wait()
        logger.info(f"Shutdown requested, waiting up to {self._config.shutdown_grace_seconds:.0f}s for workers")

        _, pending = await asyncio.wait(tasks, timeout=self._config.shutdown_grace_seconds)
        for task in pending:
            logger.warning(f"Worker {task.get_name()} did not stop in time, cancelling")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        failed = [w for w in self._workers.values() if w.status == WorkerStatus.FAILED]
        return 1 if failed else 0

    async def _supervise(
        self,
        name: str,
        worker: Callable[[asyncio.Event], Awaitable[None]],
        shutdown: asyncio.Event,
    ) -> None:
        state = WorkerState(name=name, status=WorkerStatus.RUNNING, started_at=datetime.now(timezone.utc))
        self._workers[name] = state
        try:
            await worker(shutdown)
            state.status = WorkerStatus.STOPPED
        except asyncio.CancelledError:
            state.status = WorkerStatus.STOPPED
            raise
        except Exception as e:
            # A dead worker takes the process down with it
            logger.error(f"Worker {name} failed: {e}", exc_info=True)
            state.status = WorkerStatus.FAILED
            state.error = str(e)
            shutdown.set()
        finally:
            state.stopped_at = datetime.now(timezone.utc)
