"""
CLI entry point

Operator commands for the job queues: enqueue jobs, inspect queues and
jobs, retry or cancel jobs, pause or drain queues, read recent errors, and
run the stuck-job sweep by hand.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from marketplace_jobs import __version__
from marketplace_jobs.config.settings import load_settings
from marketplace_jobs.domain.types import JobOptions, JobType, QueueName
from marketplace_jobs.infrastructure.queue.schedulers import get_scheduled_jobs
from marketplace_jobs.infrastructure.queue.services import WorkerServices, build_services
from marketplace_jobs.logging_config import setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser"""
    parser = argparse.ArgumentParser(
        prog="marketplace-jobs",
        description="marketplace-jobs - job queues for domains, SSL and collections",
    )
    parser.add_argument("--config", "-c", help="YAML config file (defaults to MARKETPLACE_JOBS_CONFIG)")
    parser.add_argument("--version", "-v", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    enqueue_parser = subparsers.add_parser("enqueue", help="Enqueue a job")
    enqueue_parser.add_argument("job_type", choices=[t.value for t in JobType], help="Job type")
    enqueue_parser.add_argument("--payload", "-p", default="{}", help="Job payload as JSON")
    enqueue_parser.add_argument("--priority", type=int, default=5, help="Priority 1-10")
    enqueue_parser.add_argument("--delay", type=float, default=0, help="Delay in seconds")
    enqueue_parser.add_argument("--attempts", type=int, help="Max attempts (defaults to the queue's)")

    status_parser = subparsers.add_parser("status", help="Queue metrics")
    status_parser.add_argument("--queue", "-q", choices=[q.value for q in QueueName], help="Only this queue")

    job_parser = subparsers.add_parser("job", help="Show one job")
    job_parser.add_argument("job_id", help="Job record id")

    retry_parser = subparsers.add_parser("retry", help="Retry a failed or cancelled job")
    retry_parser.add_argument("job_id", help="Job record id")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a job that has not started")
    cancel_parser.add_argument("job_id", help="Job record id")

    errors_parser = subparsers.add_parser("errors", help="Error statistics")
    errors_parser.add_argument("--hours", type=float, default=24, help="Window in hours")

    pause_parser = subparsers.add_parser("pause", help="Pause a queue")
    pause_parser.add_argument("queue", choices=[q.value for q in QueueName], help="Queue name")

    resume_parser = subparsers.add_parser("resume", help="Resume a paused queue")
    resume_parser.add_argument("queue", choices=[q.value for q in QueueName], help="Queue name")

    drain_parser = subparsers.add_parser("drain", help="Drop every waiting job of a queue")
    drain_parser.add_argument("queue", choices=[q.value for q in QueueName], help="Queue name")

    subparsers.add_parser("schedule", help="List scheduled jobs")
    subparsers.add_parser("detect-stuck", help="Heal stuck jobs now")

    return parser


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _with_services(
    config: Optional[str], fn: Callable[[WorkerServices], Awaitable[Any]]
) -> Any:
    settings = load_settings(config)
    setup_logging(settings.log_level)
    services = build_services(settings)
    try:
        return await fn(services)
    finally:
        await services.close()


async def _enqueue(services: WorkerServices, parsed: argparse.Namespace) -> int:
    payload = json.loads(parsed.payload)
    options = JobOptions(priority=parsed.priority, delay=parsed.delay, attempts=parsed.attempts)
    job_id = await services.queues.add_job(JobType(parsed.job_type), payload, options)
    _print({"job_id": job_id})
    return 0


async def _status(services: WorkerServices, parsed: argparse.Namespace) -> int:
    if parsed.queue:
        _print(await services.queues.get_queue_metrics(parsed.queue))
    else:
        _print(await services.queues.get_all_queue_metrics())
    return 0


async def _job(services: WorkerServices, parsed: argparse.Namespace) -> int:
    info = await services.job_manager.get_job_info_for_record(parsed.job_id)
    if info is None:
        print(f"Job {parsed.job_id} not found", file=sys.stderr)
        return 1
    info["events"] = services.event_log.list_job_events(parsed.job_id)
    _print(info)
    return 0


async def _retry(services: WorkerServices, parsed: argparse.Namespace) -> int:
    new_id = await services.job_manager.retry_job(parsed.job_id)
    if new_id is None:
        print(f"Job {parsed.job_id} cannot be retried (not found or not failed/cancelled)", file=sys.stderr)
        return 1
    _print({"job_id": parsed.job_id, "new_job_id": new_id})
    return 0


async def _cancel(services: WorkerServices, parsed: argparse.Namespace) -> int:
    cancelled = await services.job_manager.cancel_job(parsed.job_id)
    _print({"job_id": parsed.job_id, "cancelled": cancelled})
    return 0 if cancelled else 1


async def _pause(services: WorkerServices, parsed: argparse.Namespace) -> int:
    await services.queues.pause_queue(parsed.queue)
    _print({"queue": parsed.queue, "paused": True})
    return 0


async def _resume(services: WorkerServices, parsed: argparse.Namespace) -> int:
    await services.queues.resume_queue(parsed.queue)
    _print({"queue": parsed.queue, "paused": False})
    return 0


async def _drain(services: WorkerServices, parsed: argparse.Namespace) -> int:
    _print(await services.queues.drain_queue(parsed.queue))
    return 0


async def _errors(services: WorkerServices, parsed: argparse.Namespace) -> int:
    _print(services.error_tracking.get_error_stats(window=timedelta(hours=parsed.hours)))
    return 0


async def _detect_stuck(services: WorkerServices, parsed: argparse.Namespace) -> int:
    _print(await services.stuck_detector.detect_and_heal())
    return 0


_COMMANDS = {
    "enqueue": _enqueue,
    "status": _status,
    "job": _job,
    "retry": _retry,
    "cancel": _cancel,
    "pause": _pause,
    "resume": _resume,
    "drain": _drain,
    "errors": _errors,
    "detect-stuck": _detect_stuck,
}


def run_cli(args: Optional[list] = None) -> int:
    """
    Run the CLI

    Args:
        args: command line arguments (defaults to sys.argv)

    Returns:
        exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print(f"marketplace-jobs v{__version__}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    if parsed.command == "schedule":
        _print(get_scheduled_jobs())
        return 0

    handler = _COMMANDS[parsed.command]
    try:
        return asyncio.run(_with_services(parsed.config, lambda services: handler(services, parsed)))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
