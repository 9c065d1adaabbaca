from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime

from .app_logging import LOGGER_NAME, log_with_fields, setup_logger
from .config import AppConfig, default_config, ensure_local_paths, load_config
from .models import Job, Snapshot, Worker
from .monitor import ClusterMonitor

WORKER_JOBS_LIMIT = 5
JOB_COLUMNS = ("ID", "Worker", "Duration", "Start Time", "Finish Time", "✓")
WORKER_COLUMNS = ("Worker ID", "Name", "IP", "Jobs")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clusterwatch", description="Job cluster monitor and job submitter")
    parser.add_argument("--config", help="Path to clusterwatch YAML config")
    parser.add_argument("--api-server", help="Coordinator address as host:port (overrides config)")
    parser.add_argument("--verbose", action="store_true", help="Log every poll")
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Poll the coordinator and print jobs and workers")
    watch.add_argument("--once", action="store_true", help="Poll once, print, then exit")
    watch.add_argument("--all-jobs", action="store_true", help="Show every job per worker, not just the last 5")

    status = subparsers.add_parser("status", help="Poll once and print jobs and workers")
    status.add_argument("--all-jobs", action="store_true", help="Show every job per worker, not just the last 5")

    submit = subparsers.add_parser("submit", help="Submit new jobs at a fixed pace")
    submit.add_argument("--quantity", type=int, help="Number of jobs to submit (default from config: 5)")
    submit.add_argument("--interval", type=float, help="Seconds between submissions (default from config: 3)")
    return parser


def _table(columns: Sequence[str], rows: list[Sequence[str]]) -> str:
    widths = [len(column) for column in columns]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]
    lines = ["  ".join(cell.ljust(width) for cell, width in zip(columns, widths)).rstrip()]
    for row in rows:
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    return "\n".join(lines)


def _job_row(job: Job) -> list[str]:
    return [
        job.short_id,
        job.worker_name,
        job.display_duration,
        job.display_start,
        job.display_finish,
        job.state.glyph,
    ]


def render_error(message: str) -> str:
    return f"{message}\nPlease check the API server address (--api-server or coordinator.address)."


def render_jobs(jobs: Sequence[Job]) -> str:
    if not jobs:
        return "There are no jobs started.\nRun a new job and it immediately appears in this list."
    return _table(JOB_COLUMNS, [_job_row(job) for job in jobs])


def render_worker(worker: Worker, limit: int | None = WORKER_JOBS_LIMIT) -> str:
    header = _table(WORKER_COLUMNS, [[str(worker.worker_id), worker.name, worker.address, str(worker.job_count)]])
    jobs = worker.jobs if limit is None else worker.jobs[:limit]
    if not jobs:
        return f"{header}\nThere is no jobs for this worker."
    return f"{header}\n{_table(JOB_COLUMNS, [_job_row(job) for job in jobs])}"


def render_workers(workers: Sequence[Worker], limit: int | None = WORKER_JOBS_LIMIT) -> str:
    if not workers:
        return "There is no workers registered in the repository."
    return "\n\n".join(render_worker(worker, limit) for worker in workers)


def render_snapshot(snapshot: Snapshot, *, all_jobs: bool = False) -> str:
    if not snapshot.ok:
        return render_error(snapshot.error_message)
    limit = None if all_jobs else WORKER_JOBS_LIMIT
    return "\n".join(
        [
            "All jobs:",
            render_jobs(snapshot.all_jobs),
            "",
            "Jobs by workers:",
            render_workers(snapshot.workers, limit),
        ]
    )


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config) if args.config else default_config()
    if args.api_server:
        config.coordinator.address = args.api_server.strip()
    return config


def _open_runtime(config: AppConfig, *, verbose: bool = False) -> ClusterMonitor:
    ensure_local_paths(config)
    logger = setup_logger(config.log, logging.DEBUG if verbose else logging.INFO)
    return ClusterMonitor(config, logger)


async def _status(monitor: ClusterMonitor, *, all_jobs: bool) -> int:
    try:
        snapshot = await monitor.refresh()
    finally:
        await monitor.close()
    print(render_snapshot(snapshot, all_jobs=all_jobs))
    return 0 if snapshot.ok else 1


async def _watch(monitor: ClusterMonitor, *, all_jobs: bool) -> int:
    def show(snapshot: Snapshot) -> None:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        print(f"\n== {stamp} {monitor.api_server}\n{render_snapshot(snapshot, all_jobs=all_jobs)}", flush=True)

    monitor.add_listener(show)
    async with monitor:
        await monitor.activate()
    return 0


async def _submit(monitor: ClusterMonitor, quantity: int, interval: float) -> int:
    try:
        report = await monitor.submitter.run(quantity, interval)
    finally:
        await monitor.close()
    print(f"submitted {report.sent} of {report.requested} jobs ({report.failed} failed)")
    return 0


def cmd_status(config: AppConfig, *, all_jobs: bool = False, verbose: bool = False) -> int:
    monitor = _open_runtime(config, verbose=verbose)
    return asyncio.run(_status(monitor, all_jobs=all_jobs))


def cmd_watch(config: AppConfig, *, once: bool = False, all_jobs: bool = False, verbose: bool = False) -> int:
    if once:
        return cmd_status(config, all_jobs=all_jobs, verbose=verbose)
    monitor = _open_runtime(config, verbose=verbose)
    try:
        return asyncio.run(_watch(monitor, all_jobs=all_jobs))
    except KeyboardInterrupt:
        log_with_fields(logging.getLogger(LOGGER_NAME), logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0


def cmd_submit(
    config: AppConfig,
    quantity: int | None = None,
    interval: float | None = None,
    *,
    verbose: bool = False,
) -> int:
    monitor = _open_runtime(config, verbose=verbose)
    try:
        return asyncio.run(
            _submit(
                monitor,
                config.submit.quantity if quantity is None else quantity,
                config.submit.interval_seconds if interval is None else interval,
            )
        )
    except KeyboardInterrupt:
        log_with_fields(logging.getLogger(LOGGER_NAME), logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 130


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = _resolve_config(args)

    if args.command == "watch":
        return cmd_watch(config, once=bool(args.once), all_jobs=bool(args.all_jobs), verbose=args.verbose)
    if args.command == "status":
        return cmd_status(config, all_jobs=bool(args.all_jobs), verbose=args.verbose)
    if args.command == "submit":
        return cmd_submit(config, args.quantity, args.interval, verbose=args.verbose)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
