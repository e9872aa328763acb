from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from starsync.cli.main import (
    EXIT_CONFLICT,
    EXIT_FAILED,
    EXIT_OK,
    cmd_counts,
    cmd_enqueue,
    cmd_maintenance,
    cmd_run,
    cmd_status,
    main,
    parse_args,
)
from starsync.queue.jobs import JobConflictError, JobState, MaintenanceOptions
from starsync.services.maintenance import MaintenanceSummary, RefreshTokenCleanup
from starsync.sync.errors import FatalSyncError
from starsync.sync.types import SyncMode, SyncOptions, SyncOutcome, SyncStats
from tests.fakes import BASE_TIME


@pytest.fixture
def container(cfg) -> SimpleNamespace:
    orchestrator = AsyncMock()
    orchestrator.cfg = cfg
    return SimpleNamespace(
        cfg=cfg, orchestrator=orchestrator, engine=AsyncMock(), maintenance=AsyncMock()
    )


def _stdout_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParseArgs:
    def test_enqueue_options(self):
        args = parse_args(
            ["enqueue", "--mode", "full", "--per-page", "25", "--no-soft-delete", "--note", "hi"]
        )

        assert args.command == "enqueue"
        assert args.mode == "full"
        assert args.per_page == 25
        assert args.soft_delete is False
        assert args.note == "hi"
        assert args.respect_cursor is False

    def test_enqueue_defaults(self):
        args = parse_args(["enqueue"])

        assert args.mode == "incremental"
        assert args.per_page is None
        assert args.soft_delete is None

    def test_maintenance_flags(self):
        args = parse_args(["maintenance", "--no-dry-run", "--lock", "--enqueue"])

        assert args.dry_run is False
        assert args.lock is True
        assert args.enqueue is True

    def test_serve_and_globals(self):
        args = parse_args(["--log-level", "DEBUG", "serve", "--port", "9000"])

        assert args.log_level == "DEBUG"
        assert args.port == 9000
        assert args.host is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_unknown_mode_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["enqueue", "--mode", "partial"])


class TestCommands:
    async def test_enqueue(self, container, capsys):
        container.orchestrator.enqueue_manual_run.return_value = "sync-stars:manual:abcd1234"
        args = parse_args(["enqueue", "--mode", "full", "--per-page", "10"])

        assert await cmd_enqueue(container, args) == EXIT_OK

        assert _stdout_json(capsys) == {"job_id": "sync-stars:manual:abcd1234"}
        call = container.orchestrator.enqueue_manual_run.await_args
        assert call.args[0] == SyncOptions(mode=SyncMode.FULL, per_page=10)
        assert call.kwargs["note"] is None

    async def test_enqueue_conflict(self, container, capsys):
        container.orchestrator.enqueue_manual_run.side_effect = JobConflictError(
            "sync-stars:manual:abcd1234", JobState.WAITING
        )

        code = await cmd_enqueue(container, parse_args(["enqueue"]))

        assert code == EXIT_CONFLICT
        assert _stdout_json(capsys) == {
            "error": "SYNC_ALREADY_RUNNING",
            "job_id": "sync-stars:manual:abcd1234",
            "state": "waiting",
        }

    async def test_run_reports_stats(self, container, capsys):
        container.engine.run.return_value = SyncOutcome(SyncStats(created=2, pages=1))

        assert await cmd_run(container, parse_args(["run"])) == EXIT_OK

        payload = _stdout_json(capsys)
        assert payload["stats"]["created"] == 2
        assert "error" not in payload

    async def test_run_failure(self, container, capsys):
        container.engine.run.return_value = SyncOutcome(SyncStats(), FatalSyncError("boom"))

        assert await cmd_run(container, parse_args(["run"])) == EXIT_FAILED
        assert _stdout_json(capsys)["error"] == "boom"

    async def test_status_missing(self, container, capsys):
        container.orchestrator.get_task_status.return_value = None

        assert await cmd_status(container, parse_args(["status"])) == EXIT_FAILED
        assert _stdout_json(capsys) == {"error": "NOT_FOUND", "key": "user:octocat"}

    async def test_status(self, container, capsys):
        container.orchestrator.get_task_status.return_value = {"cursor": "c1"}

        assert await cmd_status(container, parse_args(["status"])) == EXIT_OK
        assert _stdout_json(capsys) == {"cursor": "c1"}

    async def test_counts(self, container, capsys):
        container.orchestrator.get_all_queue_counts.return_value = {"sync-stars": {"waiting": 2}}

        assert await cmd_counts(container, parse_args(["counts"])) == EXIT_OK
        assert _stdout_json(capsys) == {"sync-stars": {"waiting": 2}}

    async def test_maintenance_inline(self, container, capsys):
        container.maintenance.run.return_value = MaintenanceSummary(
            cid="abc", started_at=BASE_TIME, refresh_tokens=RefreshTokenCleanup()
        )

        code = await cmd_maintenance(container, parse_args(["maintenance", "--dry-run"]))

        assert code == EXIT_OK
        assert _stdout_json(capsys)["cid"] == "abc"
        container.maintenance.run.assert_awaited_once_with(
            MaintenanceOptions(rt_dry_run=True, queue_dry_run=True, use_lock=None)
        )

    async def test_maintenance_enqueue_skipped(self, container, capsys):
        container.orchestrator.enqueue_maintenance.return_value = None

        code = await cmd_maintenance(container, parse_args(["maintenance", "--enqueue"]))

        assert code == EXIT_CONFLICT
        assert _stdout_json(capsys) == {"job_id": None, "skipped": True}


def test_main_reports_missing_username(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_USERNAME", raising=False)

    assert main(["run"]) == EXIT_FAILED
    assert "GITHUB_USERNAME" in capsys.readouterr().err
