"""
Tests for the CLI and the worker runtime.
"""

import asyncio
import dataclasses

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.config import AppConfig, IngestionConfig
from orchestrator.cli import apply_overrides, parse_args, resolve_mode, validate_args
from orchestrator.models import RuntimeMode, WorkerStatus
from orchestrator.runtime import Runtime


# =============================================================
# CLI
# =============================================================

class TestCli:
    def test_defaults(self):
        args = parse_args([])
        assert args.mode is None
        assert args.batch_start is None
        assert validate_args(args) == []

    def test_live_without_batch_range(self):
        assert resolve_mode(AppConfig(), parse_args([])) == RuntimeMode.LIVE

    def test_batch_range_selects_batch_mode(self):
        config = apply_overrides(AppConfig(), parse_args(["--batch-start", "100", "--batch-finish", "200"]))

        assert config.ingestion.batch_start_group_id == 100
        assert config.ingestion.batch_finish_group_id == 200
        assert resolve_mode(config, parse_args([])) == RuntimeMode.BATCH

    def test_explicit_mode_wins(self):
        config = apply_overrides(AppConfig(), parse_args(["--batch-start", "1", "--batch-finish", "2"]))
        assert resolve_mode(config, parse_args(["--mode", "live"])) == RuntimeMode.LIVE

    def test_overrides_keep_other_settings(self):
        base = AppConfig(ingestion=IngestionConfig(cycle_api_url="http://source.test/cycles"))
        config = apply_overrides(base, parse_args(["--batch-start", "5"]))

        assert config.ingestion.cycle_api_url == "http://source.test/cycles"
        assert config.ingestion.batch_finish_group_id is None

    def test_rejects_inverted_batch_range(self):
        errors = validate_args(parse_args(["--batch-start", "10", "--batch-finish", "5"]))
        assert errors == ["--batch-finish must not be lower than --batch-start"]

    def test_rejects_non_positive_start(self):
        assert validate_args(parse_args(["--batch-start", "0"])) == ["--batch-start must be positive"]


# =============================================================
# WORKER SUPERVISION
# =============================================================

class TestSupervise:
    @pytest.mark.asyncio
    async def test_clean_exit_is_stopped(self):
        runtime = Runtime(AppConfig())
        shutdown = asyncio.Event()

        await runtime._supervise("noop", AsyncMock(return_value=None), shutdown)

        assert runtime.workers[0].status == WorkerStatus.STOPPED
        assert runtime.workers[0].stopped_at is not None
        assert not shutdown.is_set()

    @pytest.mark.asyncio
    async def test_failure_requests_shutdown(self):
        runtime = Runtime(AppConfig())
        shutdown = asyncio.Event()

        await runtime._supervise("broken", AsyncMock(side_effect=RuntimeError("boom")), shutdown)

        state = runtime.workers[0]
        assert state.status == WorkerStatus.FAILED
        assert state.error == "boom"
        assert shutdown.is_set()


# =============================================================
# BATCH MODE
# =============================================================

class TestBatchRun:
    @pytest.mark.asyncio
    async def test_runs_configured_range(self):
        config = dataclasses.replace(
            AppConfig(),
            ingestion=IngestionConfig(batch_start_group_id=100, batch_finish_group_id=200),
        )
        runtime = Runtime(config, mode=RuntimeMode.BATCH)
        runtime.ingestion = MagicMock()
        runtime.ingestion.run_batch = AsyncMock(return_value=[])
        shutdown = asyncio.Event()

        code = await runtime.run(shutdown)

        assert code == 0
        runtime.ingestion.run_batch.assert_awaited_once_with(100, 200, shutdown)

    @pytest.mark.asyncio
    async def test_missing_range_fails(self):
        runtime = Runtime(AppConfig(), mode=RuntimeMode.BATCH)
        runtime.ingestion = MagicMock()
        runtime.ingestion.run_batch = AsyncMock()

        assert await runtime.run(asyncio.Event()) == 1
        runtime.ingestion.run_batch.assert_not_awaited()
