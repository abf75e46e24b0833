"""
Tests for the scoreboard client and the ingestion service.

============================================================
PURPOSE
============================================================
Drives the ingestion pass against an httpx mock transport,
the in-memory SQLite store and the real status tracker.

============================================================
"""

import asyncio
from typing import Dict, List

import httpx
import pytest
from unittest.mock import AsyncMock

from core.config import IngestionConfig
from core.exceptions import SourceFetchError
from data_ingestion.collectors.scoreboard import ScoreboardClient
from data_ingestion.ingestion_service import IngestionService
from data_ingestion.types import IngestionStatus, parse_scoreboard_row
from storage.types import TimeRange, ValidatorStatus

from fakes import BASE_TS, NODE_A, NODE_B, VALIDATOR_A, VALIDATOR_B


CYCLE_URL = "https://source.test/cycles"
SCOREBOARD_URL = "https://source.test/scoreboard"


def cycle(cycle_id: int) -> Dict:
    return {
        "cycle_id": cycle_id,
        "cycle_info": {
            "utime_since": BASE_TS - 3600,
            "utime_until": BASE_TS + 65536,
            "total_weight": 1000,
            "validators": [
                {"adnl_addr": NODE_A, "pubkey": "PK", "weight": 10, "index": 0,
                 "stake": 5_000_000_000, "max_factor": 196608, "wallet_address": "EQwallet"},
            ],
        },
    }


def row(cycle_id: int, entity_id: str, validator_id: str, efficiency: float) -> Dict:
    return {
        "cycle_id": cycle_id,
        "adnl_addr": entity_id,
        "validator_adnl": validator_id,
        "pubkey": "PK",
        "pubkey_hash": "HASH",
        "weight": 10,
        "idx": 0,
        "stake": 5_000_000_000,
        "efficiency": efficiency,
        "utime_since": BASE_TS - 3600,
        "utime_until": BASE_TS + 65536,
    }


class FakeSource:
    """Serves cycle and scoreboard responses; records requests."""

    def __init__(self):
        self.cycles: List[Dict] = [cycle(100)]
        self.scoreboards: Dict[int, List[Dict]] = {
            100: [row(100, NODE_A, VALIDATOR_A, 0.5), row(100, NODE_B, VALIDATOR_B, 0.97)],
        }
        self.status_overrides: Dict[str, List[int]] = {}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"

        overrides = self.status_overrides.get(url)
        if overrides:
            return httpx.Response(overrides.pop(0), json={"error": "boom"})

        if url == CYCLE_URL:
            return httpx.Response(200, json=self.cycles)
        if url == SCOREBOARD_URL:
            cycle_id = int(request.url.params["cycle_id"])
            if cycle_id not in self.scoreboards:
                return httpx.Response(404, json={"error": "unknown cycle"})
            return httpx.Response(200, json={"scoreboard": self.scoreboards[cycle_id]})
        return httpx.Response(404)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def ingestion_config():
    return IngestionConfig(
        cycle_api_url=CYCLE_URL,
        scoreboard_api_url=SCOREBOARD_URL,
        poll_interval_seconds=0.01,
        retry_after_failure_seconds=0.01,
        batch_cycle_step=1200,
        batch_step_seconds=600,
    )


@pytest.fixture
def client(source, ingestion_config):
    http = httpx.AsyncClient(transport=httpx.MockTransport(source.handler))
    return ScoreboardClient(ingestion_config, client=http, sleep=AsyncMock())


@pytest.fixture
def service(client, store, tracker, clock, ingestion_config):
    return IngestionService(client, store, tracker, clock, ingestion_config)


# ============================================================
# CLIENT
# ============================================================

class TestScoreboardClient:
    """Tests for ScoreboardClient."""

    @pytest.mark.asyncio
    async def test_fetch_groups(self, client):
        groups = await client.fetch_groups()

        assert [g.group_id for g in groups] == [100]
        assert groups[0].members[0].wallet_address == "EQwallet"
        assert groups[0].total_weight == 1000

    @pytest.mark.asyncio
    async def test_fetch_scoreboard_window(self, client, source):
        rows = await client.fetch_scoreboard(100, BASE_TS - 60, BASE_TS)

        assert [r.validator_id for r in rows] == [VALIDATOR_A, VALIDATOR_B]
        params = source.requests[-1].url.params
        assert params["from_ts"] == str(BASE_TS - 60)
        assert params["to_ts"] == str(BASE_TS)

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, client, source):
        source.status_overrides[CYCLE_URL] = [502, 503]

        groups = await client.fetch_groups()

        assert len(groups) == 1
        assert len(source.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, client, source):
        with pytest.raises(SourceFetchError) as exc_info:
            await client.fetch_scoreboard(999)

        assert exc_info.value.status_code == 404
        assert len(source.requests) == 1

    def test_malformed_row(self):
        with pytest.raises(SourceFetchError):
            parse_scoreboard_row({"cycle_id": 1, "adnl_addr": NODE_A})


# ============================================================
# SERVICE
# ============================================================

class TestIngestionService:
    """Tests for IngestionService."""

    @pytest.mark.asyncio
    async def test_pass_stores_and_checks(self, service, store, tracker):
        result = await service.run_pass()

        assert result.status == IngestionStatus.SUCCESS
        assert result.samples_stored == 2
        assert result.alerts_emitted == 2

        status, _ = await tracker.current_status(VALIDATOR_A)
        assert status == ValidatorStatus.NOT_OK

        # Samples are stamped with the window start
        merged = await store.query_aggregates([NODE_A], TimeRange(BASE_TS - 60, BASE_TS))
        assert merged[NODE_A][BASE_TS - 60] == 0.5

    @pytest.mark.asyncio
    async def test_cycle_reference_data_stored(self, service, store):
        await service.run_pass()

        meta = await store.query_meta(TimeRange(BASE_TS - 60, BASE_TS))
        wallets = {m.entity_id: m.wallet_address for m in meta}
        assert wallets[NODE_A] == "EQwallet"

    @pytest.mark.asyncio
    async def test_second_pass_is_quiet(self, service):
        await service.run_pass()
        result = await service.run_pass()

        assert result.alerts_emitted == 0

    @pytest.mark.asyncio
    async def test_cycle_failure_isolated(self, service, source):
        source.cycles = [cycle(100), cycle(101)]

        result = await service.run_pass()

        statuses = {g.group_id: g.status for g in result.groups}
        assert statuses == {100: IngestionStatus.SUCCESS, 101: IngestionStatus.FAILED}
        assert result.status == IngestionStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_source_down_fails_pass(self, service, source):
        source.status_overrides[CYCLE_URL] = [500, 500, 500]

        result = await service.run_pass()

        assert result.status == IngestionStatus.FAILED
        assert result.error is not None
        assert service.get_recent_results(1) == [result]

    @pytest.mark.asyncio
    async def test_batch_skips_status_checks(self, service, source, tracker):
        results = await service.run_batch(1000, 1000)

        windows = [
            (int(r.url.params["from_ts"]), int(r.url.params["to_ts"]))
            for r in source.requests
            if "from_ts" in r.url.params
        ]
        assert windows == [(1000, 1060), (1600, 1660)]
        assert len(results) == 2
        assert all(r.alerts_emitted == 0 for r in results)

        status, _ = await tracker.current_status(VALIDATOR_A)
        assert status == ValidatorStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_invalid_batch_range(self, service):
        assert await service.run_batch(0, 10) == []
        assert await service.run_batch(10, 5) == []

    @pytest.mark.asyncio
    async def test_run_stops_on_shutdown(self, service):
        shutdown = asyncio.Event()
        worker = asyncio.create_task(service.run(shutdown))

        for _ in range(100):
            if service.get_recent_results():
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(worker, timeout=1)

        assert service.get_recent_results()
