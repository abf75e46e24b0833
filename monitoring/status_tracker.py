"""
Monitoring - Status Tracker.

============================================================
PURPOSE
============================================================
Per-validator health state machine.

STATES: UNKNOWN, OK, NOT_OK (ACKNOWLEDGED annotates alerts only)

TRANSITIONS:
- efficiency >= threshold -> OK, otherwise NOT_OK
- Current state lives in the cache under validator_status:{id}
  as {"status", "since"}; absent means UNKNOWN since now
- Only a change of state is recorded: the new state is cached
  without TTL, a status record is appended, an alert id is
  allocated and the alert is published

ACKNOWLEDGMENT:
- Flips the persisted alert and appends an ACKNOWLEDGED record
- Never touches the tracked state used for the next comparison

============================================================
ORDERING
============================================================
Samples for one validator must be evaluated in timestamp order.
check_many sorts its input; no ordering across validators.
Checks for one validator are serialized by a per-validator lock,
so concurrent cycles reporting the same validator see each
other's transitions. Acknowledgments are serialized as well.

============================================================
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, DefaultDict, Iterable, List, Optional, Tuple

from core.clock import ClockProtocol, from_unix
from core.config import TrackerConfig
from core.exceptions import AlertNotFoundError, MonitorError
from storage import keys
from storage.cache import CacheLayer
from storage.timeseries import TimeSeriesStore
from storage.types import Sample, StatusRecord, ValidatorStatus

from .models import Alert

if TYPE_CHECKING:
    from .alerts.dispatcher import AlertDispatcher


logger = logging.getLogger(__name__)


class StatusTracker:
    """
    Edge-triggered status detection.

    One instance is shared by all ingestion workers.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        cache: CacheLayer,
        dispatcher: "AlertDispatcher",
        clock: ClockProtocol,
        config: Optional[TrackerConfig] = None,
    ):
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._clock = clock
        self._config = config or TrackerConfig()
        self._validator_locks: DefaultDict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._ack_lock = asyncio.Lock()

    @property
    def threshold(self) -> float:
        return self._config.efficiency_threshold

    def target_status(self, efficiency: float) -> ValidatorStatus:
        if efficiency >= self.threshold:
            return ValidatorStatus.OK
        return ValidatorStatus.NOT_OK

    # --------------------------------------------------------
    # TRACKED STATE
    # --------------------------------------------------------

    async def current_status(self, validator_id: str) -> Tuple[ValidatorStatus, datetime]:
        """Cached state and since-time; UNKNOWN since now when absent."""
        found, data = await self._cache.get_json(keys.tracked_status_key(validator_id))
        if not found:
            return ValidatorStatus.UNKNOWN, self._clock.now()
        return ValidatorStatus(data["status"]), from_unix(data["since"])

    async def _set_status(self, validator_id: str, status: ValidatorStatus, since: datetime) -> None:
        await self._cache.set_json(
            keys.tracked_status_key(validator_id),
            {"status": status.value, "since": int(since.timestamp())},
        )

    # --------------------------------------------------------
    # CHECKS
    # --------------------------------------------------------

    async def check(self, sample: Sample) -> Optional[Alert]:
        """
        Evaluate one sample.

        Returns:
            The emitted alert, or None when the state is unchanged
        """
        async with self._validator_locks[sample.validator_id]:
            return await self._check_locked(sample)

    async def _check_locked(self, sample: Sample) -> Optional[Alert]:
        target = self.target_status(sample.efficiency)
        previous, since = await self.current_status(sample.validator_id)

        if target == previous:
            return None

        now = self._clock.now()
        await self._set_status(sample.validator_id, target, now)

        try:
            await self._store.append_status_change(StatusRecord(
                group_key=sample.entity_id,
                validator_id=sample.validator_id,
                timestamp=int(now.timestamp()),
                status=target,
            ))
        except MonitorError as e:
            logger.error(f"Failed to record status change for {sample.validator_id}: {e.message}")

        alert_id = await self._cache.increment(keys.ALERT_COUNTER_KEY)
        alert = Alert(
            id=alert_id,
            validator_id=sample.validator_id,
            group_key=sample.entity_id,
            group_id=sample.group_id,
            status=target,
            emitted_at=now,
            previous_status=previous,
            previous_status_since=since,
            efficiency=sample.efficiency,
        )

        logger.info(
            f"Status change detected for {sample.validator_id}: "
            f"{previous.value} -> {target.value} (efficiency={sample.efficiency:.4f})"
        )

        try:
            await self._dispatcher.publish(alert)
        except MonitorError as e:
            logger.error(f"Failed to publish alert {alert.id}: {e.message}")

        return alert

    async def check_many(self, samples: Iterable[Sample]) -> List[Alert]:
        """Evaluate samples in (validator, timestamp) order."""
        alerts = []
        for sample in sorted(samples, key=lambda s: (s.validator_id, s.timestamp)):
            try:
                alert = await self.check(sample)
            except MonitorError as e:
                logger.error(f"Failed to check status for {sample.validator_id}: {e.message}")
                continue
            if alert is not None:
                alerts.append(alert)
        return alerts

    # --------------------------------------------------------
    # ACKNOWLEDGMENT
    # --------------------------------------------------------

    async def acknowledge(self, alert_id: int, ack_by: int, username: Optional[str] = None) -> Alert:
        """
        Mark an alert acknowledged.

        Acknowledging an already acknowledged alert returns it
        unchanged and records nothing.

        Raises:
            AlertNotFoundError: If no alert has this id
        """
        async with self._ack_lock:
            return await self._acknowledge_locked(alert_id, ack_by, username)

    async def _acknowledge_locked(self, alert_id: int, ack_by: int, username: Optional[str]) -> Alert:
        alert = await self._dispatcher.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if alert.is_acknowledged:
            return alert

        alert.acknowledge(ack_by, username)
        await self._dispatcher.save_alert(alert)

        await self._store.append_status_change(StatusRecord(
            group_key=alert.group_key,
            validator_id=alert.validator_id,
            timestamp=self._clock.unix(),
            status=ValidatorStatus.ACKNOWLEDGED,
        ))

        logger.info(f"Alert {alert_id} for {alert.validator_id} acknowledged by {username or ack_by}")
        return alert
