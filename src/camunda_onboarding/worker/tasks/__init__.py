"""External task execution: leases, handlers, outcomes, retries and the polling scheduler."""

from camunda_onboarding.worker.tasks.outcome import (
    Completed,
    DomainError,
    Outcome,
    TechnicalFailure,
)
from camunda_onboarding.worker.tasks.scheduler import ExternalTaskScheduler, TopicSubscription

__all__ = [
    "Completed",
    "DomainError",
    "ExternalTaskScheduler",
    "Outcome",
    "TechnicalFailure",
    "TopicSubscription",
]
