"""Retry budgets for technical failures, and the backoff used between failed polls."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from camunda_onboarding.worker.engine.base import ExternalTask


class RetryBudget(BaseModel):
    """Retry budget of one topic.

    `max_attempts` is the number of retries granted after the first execution;
    the failure after the last retry becomes an incident.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=5000, ge=0)
    multiplier: float = Field(default=1.0, ge=1.0)
    max_delay_ms: int | None = Field(default=None, ge=0)

    def delay_for_attempt(self, attempt: int) -> int:
        """Delay before retry number `attempt` (1-based)."""

        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = int(self.base_delay_ms * self.multiplier ** (attempt - 1))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        return delay


@dataclass(frozen=True, slots=True)
class RetryDecision:
    remaining_retries: int
    retry_delay_ms: int

    @property
    def is_incident(self) -> bool:
        return self.remaining_retries == 0


class RetryPolicy:
    """Turns a technical failure into the (retries, delay) pair reported to the engine.

    The remaining count always comes from the engine. A task that has never
    failed has the whole budget plus the attempt that just ran.
    """

    def __init__(self, budget: RetryBudget) -> None:
        self.budget = budget

    def on_failure(self, task: ExternalTask) -> RetryDecision:
        remaining = task.retries if task.retries is not None else self.budget.max_attempts + 1
        remaining_after = max(remaining - 1, 0)
        if remaining_after == 0:
            return RetryDecision(remaining_retries=0, retry_delay_ms=0)

        attempts_used = max(1, self.budget.max_attempts + 1 - remaining_after)
        return RetryDecision(
            remaining_retries=remaining_after,
            retry_delay_ms=self.budget.delay_for_attempt(attempts_used),
        )


class PollBackoff:
    """Exponential, capped backoff for transport errors.

    Stateful: each `next_delay` grows the delay until `reset` is called after a
    successful round trip.
    """

    def __init__(self, *, initial_ms: int = 500, factor: float = 2.0, max_ms: int = 60_000) -> None:
        if initial_ms <= 0:
            raise ValueError("initial_ms must be > 0")
        if factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        self.initial_ms = initial_ms
        self.factor = factor
        self.max_ms = max_ms
        self._level = 0

    def next_delay(self) -> float:
        """Next delay in seconds."""

        delay_ms = min(self.initial_ms * self.factor**self._level, self.max_ms)
        if delay_ms < self.max_ms:
            self._level += 1
        return delay_ms / 1000.0

    def reset(self) -> None:
        self._level = 0
