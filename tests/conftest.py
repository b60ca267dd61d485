"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from camunda_onboarding.worker.engine.base import ExternalTask


class FakeClock:
    """A settable clock; call it to read the current time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, *, ms: int = 0, seconds: float = 0) -> None:
        self.now += timedelta(milliseconds=ms, seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_task() -> Callable[..., ExternalTask]:
    """Build an `ExternalTask` with sensible defaults."""

    def _make(
        task_id: str = "task-1",
        topic: str = "validateData",
        *,
        variables: dict[str, object] | None = None,
        retries: int | None = None,
        lock_expiration_time: datetime | None = None,
    ) -> ExternalTask:
        return ExternalTask(
            id=task_id,
            topic=topic,
            process_instance_id="pi-1",
            business_key="CUST-TEST0001",
            variables=variables or {},
            retries=retries,
            lock_expiration_time=lock_expiration_time,
            worker_id="worker-1",
        )

    return _make
