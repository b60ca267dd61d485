#!/usr/bin/env python3
"""Programmatic onboarding example against the in-process engine.

This demonstrates using the worker components directly:

* build the workers from settings (`.env` is honoured)
* start an onboarding instance
* approve (or reject) the documents at the review step
* print the final instance state
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from camunda_onboarding.worker.config import WorkerSettings
from camunda_onboarding.worker.engine.local import LocalEngine
from camunda_onboarding.worker.logging import configure_logging
from camunda_onboarding.worker.main import build_scheduler
from camunda_onboarding.worker.workflow.start import start_onboarding
from camunda_onboarding.worker.workflow.state_machine import TERMINAL_STATES, OnboardingState


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one onboarding (programmatic example).")
    parser.add_argument("--customer-name", default="Amit Sharma")
    parser.add_argument("--email", default="amit@example.com")
    parser.add_argument("--document-type", default="PASSPORT")
    parser.add_argument("--reject", action="store_true", help="Reject the documents")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = WorkerSettings().model_copy(
        update={"async_response_timeout_ms": 500, "create_account_delay_seconds": 0.2}
    )
    configure_logging(settings.log_level)

    engine = LocalEngine()
    scheduler = build_scheduler(settings, engine)
    scheduler.start()
    try:
        started = start_onboarding(
            engine,
            customer_name=args.customer_name,
            email=args.email,
            document_type=args.document_type,
        )
        status = engine.wait_for(
            started.instance_id,
            states={OnboardingState.AWAITING_REVIEW, *TERMINAL_STATES},
            timeout=10.0,
        )
        for task in engine.list_review_tasks():
            engine.submit_review_decision(
                task.task_id, approved=not args.reject, comments="Checked by example script"
            )
        status = engine.wait_for(started.instance_id, states=TERMINAL_STATES, timeout=10.0)
    finally:
        scheduler.stop()

    print(json.dumps(status.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
