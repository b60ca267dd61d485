"""Polling scheduler: fetch -> lock -> dispatch -> resolve, one loop per topic.

Each topic gets its own poller thread and its own bounded executor, so a slow
topic never delays polling of another. Shutdown is cooperative: once the stop
event is set no new poll is issued, and tasks already dispatched run to
completion and still report their outcome.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from camunda_onboarding.worker.clock import Clock, utc_now
from camunda_onboarding.worker.engine.base import TaskAuthority
from camunda_onboarding.worker.errors import (
    EngineError,
    EngineUnavailable,
    LeaseLostError,
    TaskNotFoundError,
)
from camunda_onboarding.worker.tasks.handlers import TaskHandler, format_error_detail
from camunda_onboarding.worker.tasks.lease import LeasedTask, LeaseLock
from camunda_onboarding.worker.tasks.outcome import (
    Completed,
    DomainError,
    Outcome,
    TechnicalFailure,
)
from camunda_onboarding.worker.tasks.resolver import OutcomeResolver
from camunda_onboarding.worker.tasks.retry import PollBackoff, RetryBudget, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TopicSubscription:
    topic: str
    lock_duration_ms: int
    max_tasks: int
    retry_budget: RetryBudget


@dataclass(slots=True)
class PollerStats:
    """Counters for one topic."""

    polls: int = 0
    idle_polls: int = 0
    poll_errors: int = 0
    dispatched: int = 0
    completed: int = 0
    business_errors: int = 0
    retried: int = 0
    incidents: int = 0
    dropped_reports: int = 0


class TopicPoller:
    def __init__(
        self,
        *,
        subscription: TopicSubscription,
        handler: TaskHandler,
        lease_lock: LeaseLock,
        resolver: OutcomeResolver,
        stop_event: threading.Event,
        backoff_factory: Callable[[], PollBackoff] = PollBackoff,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if subscription.max_tasks <= 0:
            raise ValueError("max_tasks must be > 0")
        self.subscription = subscription
        self._handler = handler
        self._lease_lock = lease_lock
        self._resolver = resolver
        self._stop = stop_event
        self._backoff_factory = backoff_factory
        self._poll_backoff = backoff_factory()
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=subscription.max_tasks,
            thread_name_prefix=f"task-{subscription.topic}",
        )
        self._active: set[Future[Outcome | None]] = set()
        self._stats_lock = threading.Lock()
        self.stats = PollerStats()

    @property
    def topic(self) -> str:
        return self.subscription.topic

    def run(self) -> None:
        logger.info(
            "Subscribed to topic",
            extra={
                "topic": self.topic,
                "lock_duration_ms": self.subscription.lock_duration_ms,
                "max_tasks": self.subscription.max_tasks,
            },
        )
        try:
            while not self._stop.is_set():
                self.poll_once()
        finally:
            self.drain()
            logger.info("Stopped polling topic", extra={"topic": self.topic})

    def poll_once(self) -> list[Future[Outcome | None]]:
        """Run one poll cycle and return the futures of the tasks it dispatched."""

        capacity = self._wait_for_capacity()
        if capacity == 0 or self._stop.is_set():
            return []

        try:
            leased = self._lease_lock.acquire(
                self.topic, capacity, self.subscription.lock_duration_ms
            )
        except EngineUnavailable as e:
            delay = self._poll_backoff.next_delay()
            self._count("poll_errors")
            logger.warning(
                "Engine unavailable while polling; backing off",
                extra={"topic": self.topic, "delay_seconds": delay, "error": str(e)},
            )
            self._stop.wait(delay)
            return []
        except Exception:
            # A rejected poll (bad request, auth, malformed body) must not end the loop.
            delay = self._poll_backoff.next_delay()
            self._count("poll_errors")
            logger.exception(
                "Poll failed; backing off",
                extra={"topic": self.topic, "delay_seconds": delay},
            )
            self._stop.wait(delay)
            return []

        self._poll_backoff.reset()
        self._count("polls")
        if not leased:
            self._count("idle_polls")
            if self._lease_lock.async_response_timeout_ms <= 0:
                # Without long polling an empty batch returns immediately.
                self._stop.wait(self._poll_backoff.next_delay())
            return []

        futures = [self._executor.submit(self.process, item) for item in leased]
        for future in futures:
            future.add_done_callback(self._log_unexpected_failure)
        self._active.update(futures)
        self._count("dispatched", len(futures))
        return futures

    def process(self, leased: LeasedTask) -> Outcome | None:
        """Execute one leased task and report its outcome while the lease is still held.

        Returns the reported outcome, or None when the report was dropped.
        """

        task = leased.task
        try:
            outcome = self._resolver.prepare(task, self._execute(leased))
            if not self._report(leased, outcome):
                return None
            self._count_outcome(outcome)
            return outcome
        finally:
            self._lease_lock.release(leased.lease)

    def drain(self) -> None:
        """Wait for every dispatched task to finish, then release the executor."""

        self._executor.shutdown(wait=True)
        self._active.clear()

    def _execute(self, leased: LeasedTask) -> Outcome:
        task = leased.task
        logger.info(
            "Task received",
            extra={
                "task_id": task.id,
                "topic": task.topic,
                "process_instance_id": task.process_instance_id,
                "business_key": task.business_key,
                "retries": task.retries,
            },
        )
        try:
            return self._handler.execute(task)
        except Exception as e:  # noqa: BLE001
            logger.exception(
                "Handler raised instead of returning an outcome",
                extra={"task_id": task.id, "topic": task.topic},
            )
            return TechnicalFailure(
                message=f"Unhandled error in {task.topic} handler: {e}",
                detail=format_error_detail(e),
            )

    def _report(self, leased: LeasedTask, outcome: Outcome) -> bool:
        backoff = self._backoff_factory()
        while True:
            if not self._lease_lock.holds(leased.lease):
                self._count("dropped_reports")
                logger.warning(
                    "Lease expired or superseded; outcome not reported",
                    extra={"task_id": leased.task.id, "topic": self.topic},
                )
                return False
            try:
                self._resolver.report(leased.task, outcome)
                return True
            except EngineUnavailable as e:
                delay = backoff.next_delay()
                logger.warning(
                    "Engine unavailable while reporting; retrying",
                    extra={
                        "task_id": leased.task.id,
                        "topic": self.topic,
                        "delay_seconds": delay,
                        "error": str(e),
                    },
                )
                self._sleep(delay)
            except (LeaseLostError, TaskNotFoundError) as e:
                self._count("dropped_reports")
                logger.warning(
                    "Engine rejected the report; task will be redelivered or is gone",
                    extra={"task_id": leased.task.id, "topic": self.topic, "error": str(e)},
                )
                return False
            except EngineError as e:
                # The lock lapses and the engine redelivers the task.
                self._count("dropped_reports")
                logger.error(
                    "Engine refused the report; outcome dropped",
                    extra={
                        "task_id": leased.task.id,
                        "topic": self.topic,
                        "outcome": type(outcome).__name__,
                        "error": str(e),
                    },
                )
                return False

    def _log_unexpected_failure(self, future: Future[Outcome | None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        self._count("dropped_reports")
        logger.error(
            "Task processing failed before its outcome was reported",
            extra={"topic": self.topic},
            exc_info=(type(error), error, error.__traceback__),
        )

    def _wait_for_capacity(self) -> int:
        self._active = {f for f in self._active if not f.done()}
        while len(self._active) >= self.subscription.max_tasks and not self._stop.is_set():
            _done, pending = wait(self._active, return_when=FIRST_COMPLETED)
            self._active = set(pending)
        return self.subscription.max_tasks - len(self._active)

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def _count_outcome(self, outcome: Outcome) -> None:
        if isinstance(outcome, Completed):
            self._count("completed")
        elif isinstance(outcome, DomainError):
            self._count("business_errors")
        elif outcome.is_incident:
            self._count("incidents")
        else:
            self._count("retried")


class ExternalTaskScheduler:
    """Run one `TopicPoller` thread per subscription until the stop event is set."""

    def __init__(
        self,
        *,
        authority: TaskAuthority,
        handlers: dict[str, TaskHandler],
        subscriptions: list[TopicSubscription],
        worker_id: str,
        async_response_timeout_ms: int = 20_000,
        lease_safety_margin_ms: int = 1_000,
        backoff_factory: Callable[[], PollBackoff] = PollBackoff,
        stop_event: threading.Event | None = None,
        clock: Clock = utc_now,
    ) -> None:
        missing = [s.topic for s in subscriptions if s.topic not in handlers]
        if missing:
            raise ValueError(f"No handler registered for topics: {', '.join(missing)}")

        self.worker_id = worker_id
        self.stop_event = stop_event or threading.Event()
        self.lease_lock = LeaseLock(
            authority,
            worker_id=worker_id,
            async_response_timeout_ms=async_response_timeout_ms,
            safety_margin_ms=lease_safety_margin_ms,
            clock=clock,
        )
        resolver = OutcomeResolver(
            authority,
            worker_id=worker_id,
            retry_policies={s.topic: RetryPolicy(s.retry_budget) for s in subscriptions},
        )
        self.pollers: dict[str, TopicPoller] = {
            s.topic: TopicPoller(
                subscription=s,
                handler=handlers[s.topic],
                lease_lock=self.lease_lock,
                resolver=resolver,
                stop_event=self.stop_event,
                backoff_factory=backoff_factory,
            )
            for s in subscriptions
        }
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Scheduler already started")
        for topic, poller in self.pollers.items():
            thread = threading.Thread(target=poller.run, name=f"poller-{topic}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(
            "External task workers started",
            extra={"worker_id": self.worker_id, "topics": list(self.pollers)},
        )

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Shutdown requested; finishing in-flight tasks")
        self.stop_event.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for poller threads; True if all of them have exited."""

        for thread in self._threads:
            thread.join(timeout)
        return not any(t.is_alive() for t in self._threads)

    def stop(self, timeout: float | None = None) -> bool:
        self.request_stop()
        return self.join(timeout)

    def run_until_stopped(self) -> None:
        """Block the calling thread until the stop event is set, then shut down."""

        self.start()
        # Short waits keep the main thread responsive to signals.
        while not self.stop_event.wait(0.5):
            pass
        self.join()
        logger.info("External task workers stopped", extra={"worker_id": self.worker_id})

    @property
    def stats(self) -> dict[str, PollerStats]:
        return {topic: poller.stats for topic, poller in self.pollers.items()}
