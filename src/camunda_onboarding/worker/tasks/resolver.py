from __future__ import annotations

import dataclasses
import logging

from camunda_onboarding.worker.engine.base import ExternalTask, TaskAuthority
from camunda_onboarding.worker.tasks.outcome import (
    Completed,
    DomainError,
    Outcome,
    TechnicalFailure,
)
from camunda_onboarding.worker.tasks.retry import RetryPolicy

logger = logging.getLogger(__name__)


class OutcomeResolver:
    """Report one outcome of one attempt to the engine.

    Completed -> complete, DomainError -> business error (error boundary path),
    TechnicalFailure -> retry policy, then a failure report.
    """

    def __init__(
        self,
        authority: TaskAuthority,
        *,
        worker_id: str,
        retry_policies: dict[str, RetryPolicy],
    ) -> None:
        self._authority = authority
        self.worker_id = worker_id
        self._retry_policies = retry_policies

    def prepare(self, task: ExternalTask, outcome: Outcome) -> Outcome:
        """Fill in the retry decision for technical failures; other outcomes pass through."""

        if not isinstance(outcome, TechnicalFailure):
            return outcome
        decision = self._retry_policies[task.topic].on_failure(task)
        return dataclasses.replace(
            outcome,
            remaining_retries=decision.remaining_retries,
            retry_delay_ms=decision.retry_delay_ms,
        )

    def report(self, task: ExternalTask, outcome: Outcome) -> None:
        """Send a prepared outcome to the engine.

        Raises:
            EngineUnavailable, LeaseLostError, TaskNotFoundError: from the authority.
        """

        if isinstance(outcome, Completed):
            self._authority.complete(task.id, worker_id=self.worker_id, variables=outcome.variables)
            logger.info("Task completed", extra={"task_id": task.id, "topic": task.topic})
            return

        if isinstance(outcome, DomainError):
            self._authority.throw_business_error(
                task.id,
                worker_id=self.worker_id,
                error_code=outcome.code,
                error_message=outcome.message,
                variables=outcome.variables,
            )
            logger.info(
                "Business error thrown; process follows the error boundary path",
                extra={"task_id": task.id, "topic": task.topic, "error_code": outcome.code},
            )
            return

        if outcome.remaining_retries is None or outcome.retry_delay_ms is None:
            raise ValueError("Technical failure must be prepared before it is reported")

        message = outcome.message
        if outcome.is_incident:
            message = f"{message} (no retries left)"
        self._authority.report_failure(
            task.id,
            worker_id=self.worker_id,
            error_message=message,
            error_details=outcome.detail,
            retries=outcome.remaining_retries,
            retry_timeout_ms=outcome.retry_delay_ms,
        )
        if outcome.is_incident:
            logger.error(
                "No retries remaining; task is now an incident",
                extra={"task_id": task.id, "topic": task.topic, "error": outcome.message},
            )
        else:
            logger.warning(
                "Task failed; engine will retry",
                extra={
                    "task_id": task.id,
                    "topic": task.topic,
                    "retries": outcome.remaining_retries,
                    "retry_delay_ms": outcome.retry_delay_ms,
                },
            )

    def resolve(self, task: ExternalTask, outcome: Outcome) -> Outcome:
        prepared = self.prepare(task, outcome)
        self.report(task, prepared)
        return prepared
