"""Command line entry point: run workers, trigger syncs, inspect state."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from starsync.adapters.github import GitHubClient, ReadmeService
from starsync.config import load_config
from starsync.core.logging_utils import setup_json_logging
from starsync.di.container import Container
from starsync.queue.jobs import JobConflictError, MaintenanceOptions, MaintenanceTask
from starsync.sync.types import SyncMode, SyncOptions

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starsync.config import AppConfig

logger = logging.getLogger(__name__)

__all__ = ["main", "parse_args"]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFLICT = 2


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _options_from_args(args: argparse.Namespace) -> SyncOptions:
    return SyncOptions(
        mode=SyncMode(args.mode),
        per_page=args.per_page,
        max_pages=args.max_pages,
        soft_delete_unstarred=args.soft_delete,
        respect_cursor=args.respect_cursor,
    )


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.INCREMENTAL.value,
        help="Full runs ignore the stored cursor and ETag.",
    )
    parser.add_argument("--per-page", type=int, help="Page size, 1-100.")
    parser.add_argument("--max-pages", type=int, help="Stop after this many pages; 0 = no cap.")
    parser.add_argument(
        "--soft-delete",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Archive projects no longer starred (needs a walk to the end).",
    )
    parser.add_argument(
        "--respect-cursor",
        action="store_true",
        help="In full mode, still stop at the stored cursor.",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="python -m starsync.cli",
        description="Synchronize GitHub starred repositories into the local project table",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level for this session.",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Override the configured SQLite path for this run.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("worker", help="Run queue workers and the scheduler (per BULL_ROLE).")

    enqueue = commands.add_parser("enqueue", help="Queue a manual sync.")
    _add_run_options(enqueue)
    enqueue.add_argument("--note", help="Free-form note stored with the job.")

    run = commands.add_parser("run", help="Run one sync in this process, bypassing the queue.")
    _add_run_options(run)

    commands.add_parser("status", help="Print the stored sync state.")
    commands.add_parser("counts", help="Print job counts per queue.")

    maintenance = commands.add_parser("maintenance", help="Run cleanup once.")
    maintenance.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Only count candidates (defaults to RT_CLEAN_DRY_RUN / BULL_CLEAN_DRY_RUN).",
    )
    maintenance.add_argument(
        "--lock",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Guard each step with the Redis cleanup lock.",
    )
    maintenance.add_argument(
        "--enqueue", action="store_true", help="Queue the maintenance job instead."
    )

    readme = commands.add_parser("readme", help="Print a repository README (cached).")
    readme.add_argument("full_name", help="owner/name")

    serve = commands.add_parser("serve", help="Serve the admin HTTP API.")
    serve.add_argument("--host", help="Bind address (defaults to API_HOST).")
    serve.add_argument("--port", type=int, help="Port (defaults to API_PORT).")

    return parser.parse_args(argv)


def _prepare_config(args: argparse.Namespace) -> AppConfig:
    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["runtime"] = {"log_level": args.log_level}
    if args.db_path:
        overrides["database"] = {"path": str(args.db_path)}
    needs_github = args.command in {"worker", "run", "readme"}
    return load_config(require_github=needs_github, **overrides)


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await stop.wait()


async def cmd_worker(container: Container, args: argparse.Namespace) -> int:
    await container.orchestrator.start()
    logger.info("worker_process_ready", extra={"role": container.cfg.queue.role})
    await _wait_for_shutdown()
    logger.info("worker_process_stopping")
    return EXIT_OK


async def cmd_enqueue(container: Container, args: argparse.Namespace) -> int:
    try:
        job_id = await container.orchestrator.enqueue_manual_run(
            _options_from_args(args), note=args.note
        )
    except JobConflictError as exc:
        _emit({"error": "SYNC_ALREADY_RUNNING", "job_id": exc.job_id, "state": exc.state.value})
        return EXIT_CONFLICT
    _emit({"job_id": job_id})
    return EXIT_OK


async def cmd_run(container: Container, args: argparse.Namespace) -> int:
    outcome = await container.engine.run(_options_from_args(args))
    payload: dict[str, Any] = {"stats": outcome.stats.model_dump(mode="json", by_alias=True)}
    if not outcome.ok:
        payload["error"] = str(outcome.error)
    _emit(payload)
    return EXIT_OK if outcome.ok else EXIT_FAILED


async def cmd_status(container: Container, args: argparse.Namespace) -> int:
    status = await container.orchestrator.get_task_status()
    if status is None:
        _emit({"error": "NOT_FOUND", "key": container.cfg.sync_key})
        return EXIT_FAILED
    _emit(status)
    return EXIT_OK


async def cmd_counts(container: Container, args: argparse.Namespace) -> int:
    _emit(await container.orchestrator.get_all_queue_counts())
    return EXIT_OK


async def cmd_maintenance(container: Container, args: argparse.Namespace) -> int:
    options = MaintenanceOptions(
        rt_dry_run=args.dry_run, queue_dry_run=args.dry_run, use_lock=args.lock
    )
    if args.enqueue:
        job_id = await container.orchestrator.enqueue_maintenance(MaintenanceTask(options=options))
        _emit({"job_id": job_id, "skipped": job_id is None})
        return EXIT_OK if job_id else EXIT_CONFLICT
    summary = await container.maintenance.run(options)
    _emit(summary.model_dump(mode="json"))
    return EXIT_OK


async def cmd_readme(container: Container, args: argparse.Namespace) -> int:
    async with GitHubClient.from_config(container.cfg.github) as client:
        text = await ReadmeService(container.cfg, client, container.cache).get_readme(
            args.full_name
        )
    sys.stdout.write(text)
    return EXIT_OK if text else EXIT_FAILED


COMMANDS: dict[str, Callable[[Container, argparse.Namespace], Awaitable[int]]] = {
    "worker": cmd_worker,
    "enqueue": cmd_enqueue,
    "run": cmd_run,
    "status": cmd_status,
    "counts": cmd_counts,
    "maintenance": cmd_maintenance,
    "readme": cmd_readme,
}


async def run_cli(args: argparse.Namespace, cfg: AppConfig) -> int:
    container = await Container.create(cfg)
    try:
        return await COMMANDS[args.command](container, args)
    finally:
        await container.close()


def _serve(args: argparse.Namespace, cfg: AppConfig) -> int:
    import uvicorn

    uvicorn.run(
        "starsync.api.main:app",
        host=args.host or cfg.runtime.api_host,
        port=args.port or cfg.runtime.api_port,
        log_config=None,
    )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``python -m starsync.cli``."""
    args = parse_args(argv)
    try:
        cfg = _prepare_config(args)
    except RuntimeError as exc:
        sys.stderr.write(f"{exc}\n")
        return EXIT_FAILED

    setup_json_logging(cfg.runtime.log_level, cfg.runtime.log_file)
    if args.command == "serve":
        return _serve(args, cfg)
    try:
        return asyncio.run(run_cli(args, cfg))
    except KeyboardInterrupt:  # pragma: no cover - user cancelled
        return EXIT_FAILED
    except Exception as exc:
        logger.exception("cli_command_failed", exc_info=exc, extra={"command": args.command})
        return EXIT_FAILED
