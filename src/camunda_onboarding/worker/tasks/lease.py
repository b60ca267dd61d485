"""Worker-side view of task leases.

The engine is the only lock authority. This module only remembers which
leases the worker was granted, so that nothing is reported against a lease
that may have expired or been superseded.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from camunda_onboarding.worker.clock import Clock, utc_now
from camunda_onboarding.worker.engine.base import ExternalTask, TaskAuthority

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Lease:
    task_id: str
    worker_id: str
    expires_at: datetime
    lease_id: str

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class LeasedTask:
    task: ExternalTask
    lease: Lease


class LeaseLock:
    """Acquire tasks from the authority and track the leases locally.

    The engine locks a task when the fetch returns, not when it was issued: with
    long polling that can be many seconds apart. Local expiry is therefore
    measured from the response, minus a safety margin, and is capped by the
    lock expiration the engine reports.
    """

    def __init__(
        self,
        authority: TaskAuthority,
        *,
        worker_id: str,
        async_response_timeout_ms: int = 20_000,
        safety_margin_ms: int = 1_000,
        clock: Clock = utc_now,
    ) -> None:
        self._authority = authority
        self.worker_id = worker_id
        self.async_response_timeout_ms = async_response_timeout_ms
        self.safety_margin_ms = safety_margin_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._leases: dict[str, Lease] = {}
        self._in_flight: set[str] = set()

    def acquire(self, topic: str, max_batch: int, lease_duration_ms: int) -> list[LeasedTask]:
        """Lock up to `max_batch` tasks of `topic`.

        Raises:
            EngineUnavailable: the authority could not be reached.
        """

        if max_batch <= 0:
            return []

        tasks = self._authority.fetch_and_lock(
            worker_id=self.worker_id,
            topics={topic: lease_duration_ms},
            max_tasks=max_batch,
            async_response_timeout_ms=self.async_response_timeout_ms,
        )

        received_at = self._clock()
        leased: list[LeasedTask] = []
        with self._lock:
            for task in tasks:
                lease = self._new_lease(task, received_at, lease_duration_ms)
                self._leases[task.id] = lease
                if task.id in self._in_flight:
                    # The older execution's lease is superseded; its report will be dropped.
                    logger.warning(
                        "Task is still executing locally; not dispatching it again",
                        extra={"task_id": task.id, "topic": topic},
                    )
                    continue
                self._in_flight.add(task.id)
                leased.append(LeasedTask(task=task, lease=lease))
        return leased

    def holds(self, lease: Lease) -> bool:
        """True if `lease` is the latest lease for its task and has not expired."""

        with self._lock:
            current = self._leases.get(lease.task_id)
            if current is None or current.lease_id != lease.lease_id:
                return False
        return not lease.is_expired(self._clock())

    def release(self, lease: Lease) -> None:
        with self._lock:
            self._in_flight.discard(lease.task_id)
            # Any newer lease for this task was never dispatched and cannot be used now.
            self._leases.pop(lease.task_id, None)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _new_lease(
        self, task: ExternalTask, received_at: datetime, lease_duration_ms: int
    ) -> Lease:
        margin = timedelta(milliseconds=min(self.safety_margin_ms, lease_duration_ms // 2))
        expires_at = received_at + timedelta(milliseconds=lease_duration_ms) - margin
        if task.lock_expiration_time is not None:
            expires_at = min(expires_at, task.lock_expiration_time - margin)
        return Lease(
            task_id=task.id,
            worker_id=self.worker_id,
            expires_at=expires_at,
            lease_id=uuid.uuid4().hex,
        )
