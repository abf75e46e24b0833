"""
Tests for the status tracker.

============================================================
PURPOSE
============================================================
Edge-triggered detection and acknowledgment.

TEST PRINCIPLES:
- Alerts fire only on a change of state
- Threshold is inclusive for OK
- Acknowledgment never changes the tracked state

============================================================
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from core.exceptions import AlertNotFoundError, StoreError
from storage import keys
from storage.types import ValidatorStatus

from fakes import BASE_TS, NODE_A, VALIDATOR_A, VALIDATOR_B, make_sample


class TestCheck:
    """Tests for StatusTracker.check."""

    @pytest.mark.asyncio
    async def test_edge_triggered_sequence(self, tracker, store, clock):
        emitted = []
        for i, efficiency in enumerate([0.95, 0.92, 0.80, 0.85, 0.93]):
            alert = await tracker.check(make_sample(efficiency, BASE_TS + 60 * i))
            if alert is not None:
                emitted.append(alert)
            clock.advance(minutes=1)

        assert [a.status for a in emitted] == [
            ValidatorStatus.OK,
            ValidatorStatus.NOT_OK,
            ValidatorStatus.OK,
        ]
        assert [a.previous_status for a in emitted] == [
            ValidatorStatus.UNKNOWN,
            ValidatorStatus.OK,
            ValidatorStatus.NOT_OK,
        ]
        assert [a.id for a in emitted] == [1, 2, 3]

        history = await store.query_status_history(NODE_A)
        assert [r.status for r in history] == [
            ValidatorStatus.OK,
            ValidatorStatus.NOT_OK,
            ValidatorStatus.OK,
        ]

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, tracker):
        alert = await tracker.check(make_sample(0.9))
        assert alert.status == ValidatorStatus.OK

    @pytest.mark.asyncio
    async def test_state_cached_without_expiry(self, tracker, redis_client, clock):
        await tracker.check(make_sample(0.5))

        status, since = await tracker.current_status(VALIDATOR_A)
        assert status == ValidatorStatus.NOT_OK
        assert since == clock.now()
        assert redis_client.ttl_of(keys.tracked_status_key(VALIDATOR_A)) is None

    @pytest.mark.asyncio
    async def test_previous_duration(self, tracker, clock):
        await tracker.check(make_sample(0.95))
        clock.advance(hours=2, minutes=5)

        alert = await tracker.check(make_sample(0.1))

        assert alert.previous_duration_seconds == 2 * 3600 + 5 * 60

    @pytest.mark.asyncio
    async def test_alert_persisted_and_published(self, tracker, dispatcher, cache):
        async with cache.subscribe("validator_notifications") as subscription:
            alert = await tracker.check(make_sample(0.3))
            payload = await subscription.next_message(timeout=0.1)

        assert payload is not None
        stored = await dispatcher.get_alert(alert.id)
        assert stored == alert

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_alert(self, tracker, store):
        store.append_status_change = AsyncMock(side_effect=StoreError("append_status_change"))

        alert = await tracker.check(make_sample(0.3))

        assert alert is not None
        assert alert.status == ValidatorStatus.NOT_OK

    @pytest.mark.asyncio
    async def test_check_many_orders_per_validator(self, tracker):
        samples = [
            make_sample(0.95, BASE_TS + 120, validator_id=VALIDATOR_A),
            make_sample(0.50, BASE_TS + 60, validator_id=VALIDATOR_A),
            make_sample(0.50, BASE_TS, validator_id=VALIDATOR_B),
        ]

        alerts = await tracker.check_many(samples)

        a_statuses = [a.status for a in alerts if a.validator_id == VALIDATOR_A]
        assert a_statuses == [ValidatorStatus.NOT_OK, ValidatorStatus.OK]
        assert len(alerts) == 3

    @pytest.mark.asyncio
    async def test_concurrent_checks_for_one_validator(self, tracker, store):
        # Two cycles reporting the same validator in the same pass
        results = await asyncio.gather(
            tracker.check(make_sample(0.5, group_id=100)),
            tracker.check(make_sample(0.5, group_id=101)),
        )

        emitted = [a for a in results if a is not None]
        assert len(emitted) == 1
        assert emitted[0].previous_status == ValidatorStatus.UNKNOWN

        history = await store.query_status_history(NODE_A)
        assert [r.status for r in history] == [ValidatorStatus.NOT_OK]

    @pytest.mark.asyncio
    async def test_concurrent_checks_keep_other_validators_independent(self, tracker):
        results = await asyncio.gather(
            tracker.check(make_sample(0.5, validator_id=VALIDATOR_A)),
            tracker.check(make_sample(0.5, validator_id=VALIDATOR_B)),
        )

        assert sorted(a.validator_id for a in results) == [VALIDATOR_A, VALIDATOR_B]


class TestAcknowledge:
    """Tests for StatusTracker.acknowledge."""

    @pytest.mark.asyncio
    async def test_acknowledge_keeps_tracked_state(self, tracker, dispatcher, store, clock):
        alert = await tracker.check(make_sample(0.5))
        clock.advance(minutes=3)

        acked = await tracker.acknowledge(alert.id, ack_by=555, username="ops")

        assert acked.is_acknowledged
        assert acked.ack_by == 555
        assert (await dispatcher.get_alert(alert.id)).is_acknowledged

        status, _ = await tracker.current_status(VALIDATOR_A)
        assert status == ValidatorStatus.NOT_OK
        assert await tracker.check(make_sample(0.6)) is None

        history = await store.query_status_history(NODE_A)
        assert history[0].status == ValidatorStatus.ACKNOWLEDGED
        assert history[0].timestamp == clock.unix()

    @pytest.mark.asyncio
    async def test_acknowledge_twice_is_noop(self, tracker, store):
        alert = await tracker.check(make_sample(0.5))
        await tracker.acknowledge(alert.id, ack_by=1)
        await tracker.acknowledge(alert.id, ack_by=2)

        history = await store.query_status_history(NODE_A)
        assert [r.status for r in history].count(ValidatorStatus.ACKNOWLEDGED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_acknowledgments_record_once(self, tracker, store):
        alert = await tracker.check(make_sample(0.5))

        await asyncio.gather(
            tracker.acknowledge(alert.id, ack_by=1),
            tracker.acknowledge(alert.id, ack_by=2),
        )

        history = await store.query_status_history(NODE_A)
        assert [r.status for r in history].count(ValidatorStatus.ACKNOWLEDGED) == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, tracker):
        with pytest.raises(AlertNotFoundError) as exc_info:
            await tracker.acknowledge(999, ack_by=1)
        assert exc_info.value.is_client_error
