"""
Data Ingestion - Ingestion Service.

============================================================
RESPONSIBILITY
============================================================
Periodically pulls cycle scoreboards into the time-series
store and feeds new samples to the status tracker.

============================================================
WORKFLOW
============================================================
1. Fetch current cycles; upsert cycle reference data
2. Process cycles through a bounded worker pool. Per cycle,
   strictly in order:
   a. Fetch the scoreboard for the last poll window
   b. Append samples
   c. Run status checks (timestamp order per validator)
3. Wait for the poll interval or shutdown

Batch mode walks a range of historical cycles in fixed windows
with status checks disabled.

============================================================
DESIGN PRINCIPLES
============================================================
- Failure isolation between cycles
- Shutdown is observed between passes, never mid-call
- No business logic beyond wiring fetch -> store -> check

============================================================
"""

import asyncio
import logging
from typing import List, Optional

from core.clock import ClockProtocol
from core.config import IngestionConfig
from core.exceptions import MonitorError
from data_ingestion.collectors.scoreboard import ScoreboardClient
from data_ingestion.types import GroupResult, IngestionResult, IngestionStatus
from monitoring.status_tracker import StatusTracker
from storage.timeseries import TimeSeriesStore
from storage.types import GroupInfo


logger = logging.getLogger(__name__)


class IngestionService:
    """
    Scoreboard ingestion worker.
    """

    def __init__(
        self,
        client: ScoreboardClient,
        store: TimeSeriesStore,
        tracker: StatusTracker,
        clock: ClockProtocol,
        config: Optional[IngestionConfig] = None,
    ):
        self._client = client
        self._store = store
        self._tracker = tracker
        self._clock = clock
        self._config = config or IngestionConfig()
        self._recent_results: List[IngestionResult] = []

    # --------------------------------------------------------
    # SINGLE PASS
    # --------------------------------------------------------

    async def run_pass(
        self,
        group_id: Optional[int] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
        check_status: bool = True,
    ) -> IngestionResult:
        """
        Fetch, store and check every current cycle once.

        Args:
            group_id: Restrict to one cycle
            from_ts / to_ts: Scoreboard window (defaults to the last minute)
            check_status: Run the status tracker on new samples
        """
        result = IngestionResult(started_at=self._clock.now())

        now = self._clock.unix()
        if from_ts is None or to_ts is None:
            to_ts = now
            from_ts = now - 60

        try:
            groups = await self._client.fetch_groups(group_id)
        except MonitorError as e:
            logger.error(f"Failed to get cycles: {e.message}")
            result.error = e.message
            result.finished_at = self._clock.now()
            self._remember(result)
            return result

        await self._store_groups(groups)

        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_groups))
        result.groups = list(await asyncio.gather(*(
            self._process_group(group.group_id, semaphore, from_ts, to_ts, check_status)
            for group in groups
        )))

        result.finished_at = self._clock.now()
        self._log_result(result)
        self._remember(result)
        return result

    async def _store_groups(self, groups: List[GroupInfo]) -> None:
        if not groups:
            return
        try:
            await self._store.append_groups(groups)
        except MonitorError as e:
            logger.error(f"Failed to store cycle reference data: {e.message}")

    async def _process_group(
        self,
        group_id: int,
        semaphore: asyncio.Semaphore,
        from_ts: int,
        to_ts: int,
        check_status: bool,
    ) -> GroupResult:
        group_result = GroupResult(group_id=group_id)

        async with semaphore:
            logger.info(f"Processing cycle ID: {group_id}")
            try:
                rows = await self._client.fetch_scoreboard(group_id, from_ts, to_ts)
                group_result.rows_fetched = len(rows)

                samples = [row.to_sample(from_ts) for row in rows]
                group_result.samples_stored = await self._store.append(samples)

                if check_status:
                    alerts = await self._tracker.check_many(samples)
                    group_result.alerts_emitted = len(alerts)
            except MonitorError as e:
                logger.error(f"Failed to process cycle {group_id}: {e.message}")
                group_result.status = IngestionStatus.FAILED
                group_result.error = e.message

        return group_result

    # --------------------------------------------------------
    # WORKER LOOPS
    # --------------------------------------------------------

    async def run(self, shutdown: asyncio.Event) -> None:
        """Poll until shutdown is set."""
        logger.info("Ingestion worker started")
        while not shutdown.is_set():
            result = await self.run_pass()

            wait = self._config.poll_interval_seconds
            if result.status == IngestionStatus.FAILED:
                wait = self._config.retry_after_failure_seconds
            logger.info(f"Waiting {wait:.0f}s before the next update...")

            if await _wait_or_shutdown(shutdown, wait):
                break
        logger.info("Ingestion worker stopped")

    async def run_batch(
        self,
        start_group_id: int,
        finish_group_id: int,
        shutdown: Optional[asyncio.Event] = None,
    ) -> List[IngestionResult]:
        """
        Backfill historical cycles window by window.

        Status checks are disabled; backfilled samples never raise alerts.
        """
        shutdown = shutdown or asyncio.Event()
        results: List[IngestionResult] = []

        if start_group_id <= 0 or finish_group_id < start_group_id:
            logger.error(f"Invalid batch range {start_group_id}..{finish_group_id}")
            return results

        logger.info(f"Starting batch ingestion from cycle {start_group_id} to {finish_group_id}")
        cycle_step = self._config.batch_cycle_step
        for group_id in range(start_group_id, finish_group_id + 1, cycle_step):
            window_end = group_id + cycle_step - 1
            for from_ts in range(group_id, window_end + 1, self._config.batch_step_seconds):
                if shutdown.is_set():
                    logger.info("Batch ingestion interrupted by shutdown")
                    return results
                to_ts = from_ts + self._config.batch_window_seconds
                logger.debug(f"Cycle {group_id}: window {from_ts} - {to_ts}")
                results.append(await self.run_pass(group_id, from_ts, to_ts, check_status=False))

        logger.info(f"Batch ingestion finished: {len(results)} windows")
        return results

    # --------------------------------------------------------
    # RESULTS
    # --------------------------------------------------------

    def _remember(self, result: IngestionResult) -> None:
        self._recent_results.append(result)
        if len(self._recent_results) > 100:
            self._recent_results = self._recent_results[-100:]

    def get_recent_results(self, limit: int = 10) -> List[IngestionResult]:
        return self._recent_results[-limit:]

    def _log_result(self, result: IngestionResult) -> None:
        log_data = result.to_dict()
        if result.status == IngestionStatus.SUCCESS:
            logger.info(f"Ingestion pass complete: {log_data}")
        elif result.status == IngestionStatus.SKIPPED:
            logger.info(f"Ingestion pass found no cycles: {log_data}")
        else:
            logger.warning(f"Ingestion pass {result.status.value}: {log_data}")


async def _wait_or_shutdown(shutdown: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; True if shutdown was signalled."""
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False
