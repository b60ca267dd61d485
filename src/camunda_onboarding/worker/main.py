"""CLI entrypoint for the onboarding workers and the process surface."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict

from pydantic import ValidationError

from camunda_onboarding import __version__
from camunda_onboarding.worker.config import WorkerSettings
from camunda_onboarding.worker.engine.base import InstanceStatus, ProcessGateway, TaskAuthority
from camunda_onboarding.worker.engine.camunda import CamundaRestClient
from camunda_onboarding.worker.engine.local import LocalEngine
from camunda_onboarding.worker.errors import (
    EngineUnavailable,
    InstanceNotFoundError,
    ReviewTaskNotFoundError,
)
from camunda_onboarding.worker.logging import configure_logging
from camunda_onboarding.worker.tasks.handlers import build_handler_table
from camunda_onboarding.worker.tasks.scheduler import ExternalTaskScheduler
from camunda_onboarding.worker.workflow.archive import InstanceArchive
from camunda_onboarding.worker.workflow.start import start_onboarding
from camunda_onboarding.worker.workflow.state_machine import TERMINAL_STATES, OnboardingState

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="camunda-onboarding",
        description="External task workers for the customer onboarding process",
    )
    parser.add_argument(
        "--version", action="version", version=f"camunda-onboarding {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "run-workers",
        help="Subscribe to all onboarding topics on the Camunda engine until interrupted",
    )

    demo = subparsers.add_parser(
        "demo",
        help="Run one onboarding end to end against an in-process engine",
    )
    _add_customer_arguments(demo, required=False)
    demo.add_argument(
        "--reject", action="store_true", help="Reject the documents at the review step"
    )
    demo.add_argument("--comments", default="Reviewed in demo", help="Reviewer comments")
    demo.add_argument(
        "--timeout-seconds", type=float, default=30.0, help="Give up after this many seconds"
    )

    start = subparsers.add_parser("start", help="Start an onboarding process instance")
    _add_customer_arguments(start, required=True)

    status = subparsers.add_parser("status", help="Show the state of a process instance")
    status.add_argument("instance_id", help="Process instance id")

    subparsers.add_parser("tasks", help="List open document review tasks")
    subparsers.add_parser("instances", help="List running onboarding instances")

    review = subparsers.add_parser("review", help="Submit a document review decision")
    review.add_argument("task_id", help="Review task id")
    decision = review.add_mutually_exclusive_group(required=True)
    decision.add_argument("--approve", action="store_true", help="Approve the documents")
    decision.add_argument("--reject", action="store_true", help="Reject the documents")
    review.add_argument("--comments", default="", help="Reviewer comments")

    cancel = subparsers.add_parser("cancel", help="Cancel a running process instance")
    cancel.add_argument("instance_id", help="Process instance id")
    cancel.add_argument("--reason", default="Cancelled via CLI", help="Cancellation reason")

    return parser


def _add_customer_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument(
        "--customer-name",
        required=required,
        default=None if required else "Amit Sharma",
        help="Customer name",
    )
    parser.add_argument(
        "--email",
        required=required,
        default=None if required else "amit@example.com",
        help="Customer email",
    )
    parser.add_argument(
        "--document-type",
        default=None,
        help="ID, PASSPORT or DRIVING_LICENSE (defaults to ID)",
    )


@contextmanager
def _signal_handlers(on_signal: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to `on_signal` for the duration of the block."""

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        on_signal(name)

    installed = True
    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in the main thread.
        installed = False
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def build_scheduler(settings: WorkerSettings, authority: TaskAuthority) -> ExternalTaskScheduler:
    return ExternalTaskScheduler(
        authority=authority,
        handlers=build_handler_table(
            create_account_delay_seconds=settings.create_account_delay_seconds
        ),
        subscriptions=settings.subscriptions(),
        worker_id=settings.worker_id,
        async_response_timeout_ms=settings.async_response_timeout_ms,
        lease_safety_margin_ms=settings.lease_safety_margin_ms,
        backoff_factory=settings.poll_backoff,
    )


def _rest_client(settings: WorkerSettings) -> CamundaRestClient:
    return CamundaRestClient(
        base_url=settings.base_url,
        process_definition_key=settings.process_definition_key,
        request_timeout_seconds=settings.request_timeout_seconds,
    )


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _run_workers(settings: WorkerSettings) -> int:
    client = _rest_client(settings)
    scheduler = build_scheduler(settings, client)

    def _stop(signal_name: str) -> None:
        logger.info("Signal received", extra={"signal": signal_name})
        scheduler.request_stop()

    try:
        with _signal_handlers(_stop):
            scheduler.run_until_stopped()
    finally:
        client.close()
    for topic, stats in scheduler.stats.items():
        logger.info("Topic summary", extra={"topic": topic, "stats": asdict(stats)})
    return 0


def _run_demo(settings: WorkerSettings, args: argparse.Namespace) -> int:
    archive = InstanceArchive(settings.archive_path, settings.archive_max_records)
    engine = LocalEngine(archive=archive)
    # The local engine answers immediately; keep polls short so shutdown is quick.
    demo_settings = settings.model_copy(update={"async_response_timeout_ms": 1_000})
    scheduler = build_scheduler(demo_settings, engine)
    scheduler.start()
    try:
        started = start_onboarding(
            engine,
            customer_name=args.customer_name,
            email=args.email,
            document_type=args.document_type,
        )
        print(f"Started instance {started.instance_id} ({started.business_key})")

        status = engine.wait_for(
            started.instance_id,
            states={OnboardingState.AWAITING_REVIEW, *TERMINAL_STATES},
            timeout=args.timeout_seconds,
        )
        if status.state == OnboardingState.AWAITING_REVIEW:
            review = next(
                t for t in engine.list_review_tasks() if t.process_instance_id == status.instance_id
            )
            approved = not args.reject
            engine.submit_review_decision(
                review.task_id, approved=approved, comments=args.comments
            )
            print(f"Review task {review.task_id}: documentsApproved={approved}")
            status = engine.wait_for(
                started.instance_id, states=TERMINAL_STATES, timeout=args.timeout_seconds
            )
    except TimeoutError as e:
        print(str(e), file=sys.stderr)
        return 4
    finally:
        scheduler.stop()

    _print_status(status)
    return 0


def _print_status(status: InstanceStatus) -> None:
    _print_json(status.model_dump(mode="json"))


def _run_process_command(gateway: ProcessGateway, args: argparse.Namespace) -> int:
    if args.command == "start":
        started = start_onboarding(
            gateway,
            customer_name=args.customer_name,
            email=args.email,
            document_type=args.document_type,
        )
        print(f"Started instance {started.instance_id} ({started.business_key})")
        return 0

    if args.command == "status":
        _print_status(gateway.get_instance_state(args.instance_id))
        return 0

    if args.command == "tasks":
        tasks = gateway.list_review_tasks()
        if not tasks:
            print("No open review tasks")
        for task in tasks:
            print(f"{task.task_id}  {task.name}  instance={task.process_instance_id}")
        return 0

    if args.command == "instances":
        _print_json([s.model_dump(mode="json") for s in gateway.list_instances()])
        return 0

    if args.command == "review":
        gateway.submit_review_decision(args.task_id, approved=args.approve, comments=args.comments)
        print(f"Review task {args.task_id} completed (documentsApproved={args.approve})")
        return 0

    if args.command == "cancel":
        gateway.cancel_instance(args.instance_id, args.reason)
        print(f"Cancelled instance {args.instance_id}")
        return 0

    logger.error("Unknown command", extra={"command": args.command})
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, context={"worker_id": settings.worker_id})

    try:
        if args.command == "run-workers":
            return _run_workers(settings)

        if args.command == "demo":
            return _run_demo(settings, args)

        client = _rest_client(settings)
        try:
            return _run_process_command(client, args)
        finally:
            client.close()

    except (InstanceNotFoundError, ReviewTaskNotFoundError) as e:
        print(str(e), file=sys.stderr)
        return 3

    except EngineUnavailable as e:
        logger.error("Engine unavailable", extra={"error": str(e)})
        print(f"Engine unavailable: {e}", file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
