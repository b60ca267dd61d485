"""Unit tests for the worker-side lease tracking."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import Mock

import pytest

from camunda_onboarding.worker.engine.base import TaskAuthority
from camunda_onboarding.worker.errors import EngineUnavailable
from camunda_onboarding.worker.tasks.lease import LeaseLock


@pytest.fixture
def authority() -> Mock:
    return Mock(spec=TaskAuthority)


def _lease_lock(authority: Mock, clock, *, margin_ms: int = 1000) -> LeaseLock:
    return LeaseLock(
        authority,
        worker_id="worker-1",
        async_response_timeout_ms=0,
        safety_margin_ms=margin_ms,
        clock=clock,
    )


def test_acquire_requests_topic_with_lock_duration(authority: Mock, clock, make_task) -> None:
    authority.fetch_and_lock.return_value = [make_task()]
    lock = _lease_lock(authority, clock)

    leased = lock.acquire("validateData", 5, 30000)

    authority.fetch_and_lock.assert_called_once_with(
        worker_id="worker-1",
        topics={"validateData": 30000},
        max_tasks=5,
        async_response_timeout_ms=0,
    )
    assert [item.task.id for item in leased] == ["task-1"]
    assert lock.in_flight == 1


def test_expiry_is_measured_from_response_minus_margin(authority: Mock, clock, make_task) -> None:
    authority.fetch_and_lock.return_value = [make_task()]
    lock = _lease_lock(authority, clock)
    received_at = clock()

    (leased,) = lock.acquire("validateData", 1, 30000)

    assert leased.lease.expires_at == received_at + timedelta(milliseconds=29000)


def test_task_locked_late_in_a_long_poll_gets_a_full_lease(
    authority: Mock, clock, make_task
) -> None:
    def long_poll(**_: object):
        # The task shows up, and is locked, 9s into a 20s long poll.
        clock.advance(seconds=9)
        return [make_task(lock_expiration_time=clock() + timedelta(milliseconds=10000))]

    authority.fetch_and_lock.side_effect = long_poll
    lock = _lease_lock(authority, clock)

    (leased,) = lock.acquire("handleError", 1, 10000)

    assert leased.lease.expires_at == clock() + timedelta(milliseconds=9000)
    clock.advance(ms=8999)
    assert lock.holds(leased.lease)


def test_task_without_engine_expiry_is_measured_from_response(
    authority: Mock, clock, make_task
) -> None:
    def long_poll(**_: object):
        clock.advance(seconds=15)
        return [make_task()]

    authority.fetch_and_lock.side_effect = long_poll
    lock = _lease_lock(authority, clock)

    (leased,) = lock.acquire("handleError", 1, 10000)

    assert lock.holds(leased.lease)
    assert leased.lease.expires_at == clock() + timedelta(milliseconds=9000)


def test_expiry_never_outlives_engine_lock(authority: Mock, clock, make_task) -> None:
    engine_expiry = clock() + timedelta(milliseconds=10000)
    authority.fetch_and_lock.return_value = [make_task(lock_expiration_time=engine_expiry)]
    lock = _lease_lock(authority, clock)

    (leased,) = lock.acquire("validateData", 1, 30000)

    assert leased.lease.expires_at == engine_expiry - timedelta(milliseconds=1000)


def test_holds_until_local_expiry(authority: Mock, clock, make_task) -> None:
    authority.fetch_and_lock.return_value = [make_task()]
    lock = _lease_lock(authority, clock)
    (leased,) = lock.acquire("validateData", 1, 5000)

    clock.advance(ms=3999)
    assert lock.holds(leased.lease)

    clock.advance(ms=1)
    assert not lock.holds(leased.lease)


def test_release_forgets_lease(authority: Mock, clock, make_task) -> None:
    authority.fetch_and_lock.return_value = [make_task()]
    lock = _lease_lock(authority, clock)
    (leased,) = lock.acquire("validateData", 1, 5000)

    lock.release(leased.lease)

    assert not lock.holds(leased.lease)
    assert lock.in_flight == 0


def test_redelivered_task_is_not_dispatched_twice(authority: Mock, clock, make_task) -> None:
    authority.fetch_and_lock.return_value = [make_task()]
    lock = _lease_lock(authority, clock)
    (first,) = lock.acquire("validateData", 1, 5000)

    clock.advance(ms=6000)
    second_batch = lock.acquire("validateData", 1, 5000)

    assert second_batch == []
    # The newer lease supersedes the one the running execution holds.
    assert not lock.holds(first.lease)
    assert lock.in_flight == 1

    lock.release(first.lease)
    assert lock.in_flight == 0
    assert lock.acquire("validateData", 1, 5000) != []


def test_zero_capacity_does_not_poll(authority: Mock, clock) -> None:
    lock = _lease_lock(authority, clock)

    assert lock.acquire("validateData", 0, 5000) == []
    authority.fetch_and_lock.assert_not_called()


def test_engine_unavailable_propagates(authority: Mock, clock) -> None:
    authority.fetch_and_lock.side_effect = EngineUnavailable("connection refused")
    lock = _lease_lock(authority, clock)

    with pytest.raises(EngineUnavailable):
        lock.acquire("validateData", 1, 5000)
