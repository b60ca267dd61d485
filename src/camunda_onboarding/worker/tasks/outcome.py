"""The three ways a single execution attempt can end.

Every handler returns exactly one of these; nothing is signalled by raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ERROR_CODE_VARIABLE = "errorCode"


@dataclass(frozen=True, slots=True)
class Completed:
    variables: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.variables.get(ERROR_CODE_VARIABLE):
            raise ValueError("A completed outcome must not carry an errorCode")


@dataclass(frozen=True, slots=True)
class DomainError:
    """An expected business-rule violation, routed to the error boundary path."""

    code: str
    message: str
    variables: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TechnicalFailure:
    """An unexpected fault.

    Handlers fill `message` and `detail`; the retry policy fills the rest when
    the outcome is resolved.
    """

    message: str
    detail: str = ""
    remaining_retries: int | None = None
    retry_delay_ms: int | None = None

    @property
    def is_incident(self) -> bool:
        return self.remaining_retries == 0


Outcome = Completed | DomainError | TechnicalFailure
