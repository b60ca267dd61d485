from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from camunda_onboarding.worker.topics import (
    CREATE_ACCOUNT,
    HANDLE_ERROR,
    REVIEW_DOCUMENTS,
    VALIDATE_DATA,
)


class OnboardingState(str, Enum):
    STARTED = "started"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    AWAITING_REVIEW = "awaiting_review"
    CREATING_ACCOUNT = "creating_account"
    HANDLING_ERROR = "handling_error"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"


class Trigger(str, Enum):
    """What moves an instance forward.

    Task outcomes (`TASK_COMPLETED`, `DOMAIN_ERROR`), the review decision, or
    `PROCEED` for steps the engine takes on its own.
    """

    PROCEED = "proceed"
    TASK_COMPLETED = "task_completed"
    DOMAIN_ERROR = "domain_error"
    DOCUMENTS_APPROVED = "documents_approved"
    DOCUMENTS_REJECTED = "documents_rejected"


TRANSITIONS: dict[OnboardingState, dict[Trigger, OnboardingState]] = {
    OnboardingState.STARTED: {Trigger.PROCEED: OnboardingState.VALIDATING},
    OnboardingState.VALIDATING: {
        Trigger.TASK_COMPLETED: OnboardingState.AWAITING_REVIEW,
        Trigger.DOMAIN_ERROR: OnboardingState.VALIDATION_FAILED,
    },
    OnboardingState.AWAITING_REVIEW: {
        Trigger.DOCUMENTS_APPROVED: OnboardingState.CREATING_ACCOUNT,
        Trigger.DOCUMENTS_REJECTED: OnboardingState.REJECTED,
    },
    OnboardingState.CREATING_ACCOUNT: {Trigger.TASK_COMPLETED: OnboardingState.COMPLETED},
    OnboardingState.VALIDATION_FAILED: {Trigger.PROCEED: OnboardingState.HANDLING_ERROR},
    OnboardingState.HANDLING_ERROR: {Trigger.TASK_COMPLETED: OnboardingState.FAILED},
    OnboardingState.REJECTED: {},
    OnboardingState.COMPLETED: {},
    OnboardingState.FAILED: {},
}

TERMINAL_STATES: frozenset[OnboardingState] = frozenset(
    state for state, outgoing in TRANSITIONS.items() if not outgoing
)

# The step an instance is waiting on while in a given state.
ACTIVE_STEPS: dict[OnboardingState, str] = {
    OnboardingState.VALIDATING: VALIDATE_DATA,
    OnboardingState.AWAITING_REVIEW: REVIEW_DOCUMENTS,
    OnboardingState.CREATING_ACCOUNT: CREATE_ACCOUNT,
    OnboardingState.HANDLING_ERROR: HANDLE_ERROR,
}


class IllegalTransitionError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class WorkflowSnapshot:
    """Current state of one onboarding instance plus every state it has visited."""

    state: OnboardingState
    history: tuple[OnboardingState, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def active_step(self) -> str | None:
        return ACTIVE_STEPS.get(self.state)

    def to_json(self) -> dict[str, object]:
        return {"state": self.state.value, "history": [s.value for s in self.history]}

    @staticmethod
    def from_json(obj: Mapping[str, object]) -> WorkflowSnapshot:
        state_raw = obj.get("state")
        history_raw = obj.get("history")
        state = (
            OnboardingState(state_raw) if isinstance(state_raw, str) else OnboardingState.STARTED
        )
        history = (
            tuple(OnboardingState(s) for s in history_raw if isinstance(s, str))
            if isinstance(history_raw, list)
            else (state,)
        )
        return WorkflowSnapshot(state=state, history=history)


def initial_snapshot() -> WorkflowSnapshot:
    return WorkflowSnapshot(state=OnboardingState.STARTED, history=(OnboardingState.STARTED,))


def transition(*, current: WorkflowSnapshot, trigger: Trigger) -> WorkflowSnapshot:
    target = TRANSITIONS.get(current.state, {}).get(trigger)
    if target is None:
        raise IllegalTransitionError(
            f"Illegal transition: {current.state.value} on {trigger.value}"
        )
    if target in current.history:
        raise IllegalTransitionError(f"State already visited: {target.value}")
    return WorkflowSnapshot(state=target, history=(*current.history, target))


def settle(current: WorkflowSnapshot) -> WorkflowSnapshot:
    """Follow automatic (`PROCEED`) transitions until a waiting or terminal state."""

    snapshot = current
    while Trigger.PROCEED in TRANSITIONS.get(snapshot.state, {}):
        snapshot = transition(current=snapshot, trigger=Trigger.PROCEED)
    return snapshot


def review_trigger(approved: bool) -> Trigger:
    return Trigger.DOCUMENTS_APPROVED if approved else Trigger.DOCUMENTS_REJECTED


def infer_state(variables: Mapping[str, object], *, ended: bool) -> OnboardingState:
    """Reconstruct the onboarding state from process variables.

    Used against a remote engine, where only variables and activity ids are
    visible. Relies on the variables each step writes.
    """

    if variables.get("onboardingCompleted") is True:
        return OnboardingState.COMPLETED
    if variables.get("documentsApproved") is False:
        return OnboardingState.REJECTED
    if variables.get("errorOccurred") is True:
        return OnboardingState.FAILED
    if variables.get("errorCode"):
        return OnboardingState.FAILED if ended else OnboardingState.HANDLING_ERROR
    if variables.get("documentsApproved") is True:
        return OnboardingState.COMPLETED if ended else OnboardingState.CREATING_ACCOUNT
    if variables.get("isValid") is True:
        return OnboardingState.AWAITING_REVIEW
    return OnboardingState.VALIDATING
