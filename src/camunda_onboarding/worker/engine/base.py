"""Interfaces the worker core consumes from (and exposes to) the workflow engine.

The wire format belongs to the adapters (`engine.camunda`, `engine.local`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field

from camunda_onboarding.worker.workflow.state_machine import OnboardingState


@dataclass(frozen=True, slots=True)
class ExternalTask:
    """A locked unit of work, mirrored read-only while the worker holds its lease."""

    id: str
    topic: str
    process_instance_id: str
    business_key: str | None = None
    variables: dict[str, object] = field(default_factory=dict)
    # None until the first failure is reported.
    retries: int | None = None
    lock_expiration_time: datetime | None = None
    worker_id: str | None = None

    def variable(self, name: str) -> object | None:
        return self.variables.get(name)


@dataclass(frozen=True, slots=True)
class ReviewTask:
    """An open human review step waiting for a documents decision."""

    task_id: str
    name: str
    process_instance_id: str
    business_key: str | None
    created_at: datetime | None
    variables: dict[str, object] = field(default_factory=dict)


class InstanceStatus(BaseModel):
    instance_id: str
    business_key: str | None = None
    state: OnboardingState
    active_step: str | None = None
    ended: bool = False
    end_reason: str | None = None
    incident: str | None = None
    variables: dict[str, object] = Field(default_factory=dict)


class TaskAuthority(Protocol):
    """The lock authority: hands out leases and accepts per-attempt outcomes."""

    def fetch_and_lock(
        self,
        *,
        worker_id: str,
        topics: dict[str, int],
        max_tasks: int,
        async_response_timeout_ms: int,
    ) -> list[ExternalTask]:
        """Lock up to `max_tasks` tasks; `topics` maps topic name to lock duration (ms)."""
        ...

    def complete(self, task_id: str, *, worker_id: str, variables: dict[str, object]) -> None: ...

    def throw_business_error(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_code: str,
        error_message: str,
        variables: dict[str, object],
    ) -> None: ...

    def report_failure(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_message: str,
        error_details: str,
        retries: int,
        retry_timeout_ms: int,
    ) -> None: ...


class ProcessGateway(Protocol):
    """Process-management surface used by the CLI and the REST API."""

    def start_instance(self, business_key: str, variables: dict[str, object]) -> str: ...

    def get_instance_state(self, instance_id: str) -> InstanceStatus: ...

    def submit_review_decision(self, task_id: str, *, approved: bool, comments: str) -> None: ...

    def cancel_instance(self, instance_id: str, reason: str) -> None: ...

    def list_review_tasks(self) -> list[ReviewTask]: ...

    def list_instances(self) -> list[InstanceStatus]: ...
