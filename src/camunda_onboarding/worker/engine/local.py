"""In-process lock authority and onboarding engine.

Stands in for Camunda in the demo and in tests: hands out leases with long
polling, reclaims expired locks, enforces retry delays, raises incidents when
retries run out, and moves each instance through the onboarding state machine
as outcomes arrive. Ended instances are written to the archive when one is
configured and are otherwise kept in memory.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from camunda_onboarding.worker.clock import Clock, utc_now
from camunda_onboarding.worker.engine.base import ExternalTask, InstanceStatus, ReviewTask
from camunda_onboarding.worker.errors import (
    InstanceNotFoundError,
    LeaseLostError,
    ReviewTaskNotFoundError,
    TaskNotFoundError,
)
from camunda_onboarding.worker.topics import ALL_TOPICS, REVIEW_DOCUMENTS
from camunda_onboarding.worker.workflow.archive import ArchivedInstance, InstanceArchive
from camunda_onboarding.worker.workflow.state_machine import (
    IllegalTransitionError,
    OnboardingState,
    Trigger,
    WorkflowSnapshot,
    initial_snapshot,
    review_trigger,
    settle,
    transition,
)

logger = logging.getLogger(__name__)

REVIEW_TASK_NAME = "Review Documents"
CANCELLED_VIA_API = "Cancelled via API"

_MIN_WAIT_SECONDS = 0.01
_IDLE_WAIT_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class LocalTaskInfo:
    """Read-only view of an external task held by the local engine."""

    id: str
    topic: str
    instance_id: str
    retries: int | None
    incident: bool
    error_message: str | None
    available_at: datetime
    worker_id: str | None
    lock_expires_at: datetime | None


@dataclass
class _Task:
    id: str
    topic: str
    instance_id: str
    available_at: datetime
    retries: int | None = None
    worker_id: str | None = None
    lock_expires_at: datetime | None = None
    error_message: str | None = None
    error_details: str | None = None
    incident: bool = False

    def is_locked(self, now: datetime) -> bool:
        return self.lock_expires_at is not None and now < self.lock_expires_at

    def info(self) -> LocalTaskInfo:
        return LocalTaskInfo(
            id=self.id,
            topic=self.topic,
            instance_id=self.instance_id,
            retries=self.retries,
            incident=self.incident,
            error_message=self.error_message,
            available_at=self.available_at,
            worker_id=self.worker_id,
            lock_expires_at=self.lock_expires_at,
        )


@dataclass
class _Instance:
    id: str
    business_key: str | None
    snapshot: WorkflowSnapshot
    variables: dict[str, object] = field(default_factory=dict)
    incident: str | None = None
    review_task_id: str | None = None
    review_created_at: datetime | None = None


class LocalEngine:
    """Implements both `TaskAuthority` and `ProcessGateway` in memory."""

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        archive: InstanceArchive | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._clock = clock
        self._archive = archive
        self._new_id = id_factory
        self._cond = threading.Condition(threading.Lock())
        self._tasks: dict[str, _Task] = {}
        self._instances: dict[str, _Instance] = {}
        self._ended: dict[str, ArchivedInstance] = {}

    # -- lock authority ---------------------------------------------------

    def fetch_and_lock(
        self,
        *,
        worker_id: str,
        topics: dict[str, int],
        max_tasks: int,
        async_response_timeout_ms: int,
    ) -> list[ExternalTask]:
        deadline = time.monotonic() + max(async_response_timeout_ms, 0) / 1000.0
        with self._cond:
            while True:
                locked = self._lock_available(worker_id, topics, max_tasks)
                remaining = deadline - time.monotonic()
                if locked or remaining <= 0:
                    return locked
                self._cond.wait(min(remaining, self._seconds_until_next_change(topics)))

    def _lock_available(
        self, worker_id: str, topics: dict[str, int], max_tasks: int
    ) -> list[ExternalTask]:
        now = self._clock()
        locked: list[ExternalTask] = []
        for task in self._tasks.values():
            if len(locked) >= max_tasks:
                break
            if task.topic not in topics or task.incident or task.available_at > now:
                continue
            if task.is_locked(now):
                continue
            if task.worker_id is not None:
                logger.info(
                    "Reclaiming expired lock",
                    extra={
                        "task_id": task.id,
                        "topic": task.topic,
                        "previous_worker": task.worker_id,
                    },
                )
            task.worker_id = worker_id
            task.lock_expires_at = now + timedelta(milliseconds=topics[task.topic])
            locked.append(self._external_task(task))
        return locked

    def _seconds_until_next_change(self, topics: dict[str, int]) -> float:
        now = self._clock()
        upcoming: list[datetime] = []
        for task in self._tasks.values():
            if task.topic not in topics or task.incident:
                continue
            if task.available_at > now:
                upcoming.append(task.available_at)
            elif task.lock_expires_at is not None and task.lock_expires_at > now:
                upcoming.append(task.lock_expires_at)
        if not upcoming:
            return _IDLE_WAIT_SECONDS
        return max((min(upcoming) - now).total_seconds(), _MIN_WAIT_SECONDS)

    def _external_task(self, task: _Task) -> ExternalTask:
        instance = self._instances[task.instance_id]
        return ExternalTask(
            id=task.id,
            topic=task.topic,
            process_instance_id=task.instance_id,
            business_key=instance.business_key,
            variables=dict(instance.variables),
            retries=task.retries,
            lock_expiration_time=task.lock_expires_at,
            worker_id=task.worker_id,
        )

    def _owned_task(self, task_id: str, worker_id: str) -> _Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"External task {task_id} not found")
        if task.worker_id != worker_id or not task.is_locked(self._clock()):
            raise LeaseLostError(
                f"External task {task_id} is not locked by worker {worker_id}"
            )
        return task

    def complete(self, task_id: str, *, worker_id: str, variables: dict[str, object]) -> None:
        with self._cond:
            task = self._owned_task(task_id, worker_id)
            instance = self._instances[task.instance_id]
            del self._tasks[task_id]
            instance.variables.update(variables)
            self._advance(instance, Trigger.TASK_COMPLETED, task=task)
            self._cond.notify_all()

    def throw_business_error(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_code: str,
        error_message: str,
        variables: dict[str, object],
    ) -> None:
        with self._cond:
            task = self._owned_task(task_id, worker_id)
            instance = self._instances[task.instance_id]
            instance.variables.update(variables)
            try:
                transition(current=instance.snapshot, trigger=Trigger.DOMAIN_ERROR)
            except IllegalTransitionError:
                # No error boundary on this step: the task stays as an incident.
                message = f"Unhandled business error {error_code}: {error_message}"
                self._raise_incident(task, instance, message)
                self._cond.notify_all()
                return
            del self._tasks[task_id]
            self._advance(instance, Trigger.DOMAIN_ERROR, task=task)
            self._cond.notify_all()

    def report_failure(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_message: str,
        error_details: str,
        retries: int,
        retry_timeout_ms: int,
    ) -> None:
        with self._cond:
            task = self._owned_task(task_id, worker_id)
            task.retries = max(retries, 0)
            task.error_details = error_details
            task.worker_id = None
            task.lock_expires_at = None
            if task.retries == 0:
                self._raise_incident(task, self._instances[task.instance_id], error_message)
            else:
                task.error_message = error_message
                task.available_at = self._clock() + timedelta(milliseconds=retry_timeout_ms)
            self._cond.notify_all()

    def _raise_incident(self, task: _Task, instance: _Instance, message: str) -> None:
        task.incident = True
        task.error_message = message
        task.worker_id = None
        task.lock_expires_at = None
        instance.incident = message
        logger.error(
            "Incident raised",
            extra={
                "task_id": task.id,
                "topic": task.topic,
                "instance_id": instance.id,
                "error": message,
            },
        )

    # -- workflow ----------------------------------------------------------

    def _advance(self, instance: _Instance, trigger: Trigger, *, task: _Task | None = None) -> None:
        snapshot = settle(transition(current=instance.snapshot, trigger=trigger))
        logger.info(
            "Instance advanced",
            extra={
                "instance_id": instance.id,
                "business_key": instance.business_key,
                "from_state": instance.snapshot.state.value,
                "to_state": snapshot.state.value,
                "trigger": trigger.value,
                "task_id": task.id if task else None,
            },
        )
        instance.snapshot = snapshot
        self._enter(instance)

    def _enter(self, instance: _Instance) -> None:
        snapshot = instance.snapshot
        if snapshot.is_terminal:
            self._end(instance, reason=None)
            return
        step = snapshot.active_step
        if step == REVIEW_DOCUMENTS:
            instance.review_task_id = self._new_id()
            instance.review_created_at = self._clock()
        elif step in ALL_TOPICS:
            task_id = self._new_id()
            self._tasks[task_id] = _Task(
                id=task_id,
                topic=step,
                instance_id=instance.id,
                available_at=self._clock(),
            )

    def _end(self, instance: _Instance, *, reason: str | None) -> None:
        self._instances.pop(instance.id, None)
        for task_id in [t.id for t in self._tasks.values() if t.instance_id == instance.id]:
            del self._tasks[task_id]
        record = ArchivedInstance(
            instance_id=instance.id,
            business_key=instance.business_key,
            state=instance.snapshot.state,
            history=list(instance.snapshot.history),
            variables=dict(instance.variables),
            end_reason=reason,
            incident=instance.incident,
            ended_at=self._clock(),
        )
        if self._archive is None:
            self._ended[instance.id] = record
        else:
            self._archive.add(record)
        logger.info(
            "Instance ended",
            extra={
                "instance_id": instance.id,
                "business_key": instance.business_key,
                "state": record.state.value,
                "end_reason": reason,
            },
        )

    # -- process gateway --------------------------------------------------

    def start_instance(self, business_key: str, variables: dict[str, object]) -> str:
        with self._cond:
            instance = _Instance(
                id=self._new_id(),
                business_key=business_key,
                snapshot=settle(initial_snapshot()),
                variables=dict(variables),
            )
            self._instances[instance.id] = instance
            logger.info(
                "Process instance started",
                extra={"instance_id": instance.id, "business_key": business_key},
            )
            self._enter(instance)
            self._cond.notify_all()
            return instance.id

    def get_instance_state(self, instance_id: str) -> InstanceStatus:
        with self._cond:
            return self._status_unlocked(instance_id)

    def _status_unlocked(self, instance_id: str) -> InstanceStatus:
        instance = self._instances.get(instance_id)
        if instance is not None:
            return InstanceStatus(
                instance_id=instance.id,
                business_key=instance.business_key,
                state=instance.snapshot.state,
                active_step=instance.snapshot.active_step,
                ended=False,
                incident=instance.incident,
                variables=dict(instance.variables),
            )
        record = self._ended.get(instance_id)
        if record is None and self._archive is not None:
            record = self._archive.get(instance_id)
        if record is None:
            raise InstanceNotFoundError(f"Process instance {instance_id} not found")
        return InstanceStatus(
            instance_id=record.instance_id,
            business_key=record.business_key,
            state=record.state,
            ended=True,
            end_reason=record.end_reason,
            incident=record.incident,
            variables=dict(record.variables),
        )

    def submit_review_decision(self, task_id: str, *, approved: bool, comments: str) -> None:
        with self._cond:
            instance = next(
                (i for i in self._instances.values() if i.review_task_id == task_id), None
            )
            if instance is None:
                raise ReviewTaskNotFoundError(f"Task not found: {task_id}")
            instance.review_task_id = None
            instance.review_created_at = None
            instance.variables.update({"documentsApproved": approved, "reviewerComments": comments})
            self._advance(instance, review_trigger(approved))
            self._cond.notify_all()

    def cancel_instance(self, instance_id: str, reason: str = CANCELLED_VIA_API) -> None:
        with self._cond:
            instance = self._instances.get(instance_id)
            if instance is None:
                raise InstanceNotFoundError(f"Process instance {instance_id} not found")
            self._end(instance, reason=reason)
            self._cond.notify_all()

    def list_review_tasks(self) -> list[ReviewTask]:
        with self._cond:
            return [
                ReviewTask(
                    task_id=i.review_task_id,
                    name=REVIEW_TASK_NAME,
                    process_instance_id=i.id,
                    business_key=i.business_key,
                    created_at=i.review_created_at,
                    variables=dict(i.variables),
                )
                for i in self._instances.values()
                if i.review_task_id is not None
            ]

    def list_instances(self) -> list[InstanceStatus]:
        with self._cond:
            return [self._status_unlocked(instance_id) for instance_id in self._instances]

    # -- inspection --------------------------------------------------------

    def tasks(self, instance_id: str | None = None) -> list[LocalTaskInfo]:
        with self._cond:
            return [
                t.info()
                for t in self._tasks.values()
                if instance_id is None or t.instance_id == instance_id
            ]

    def wait_for(
        self,
        instance_id: str,
        *,
        states: Collection[OnboardingState],
        timeout: float,
    ) -> InstanceStatus:
        """Block until the instance is in one of `states` (or has ended).

        Raises:
            TimeoutError: if that does not happen within `timeout` seconds.
        """

        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                status = self._status_unlocked(instance_id)
                if status.state in states or status.ended:
                    return status
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(
                        f"Instance {instance_id} still {status.state.value} after {timeout}s"
                    )
                self._cond.wait(remaining)
