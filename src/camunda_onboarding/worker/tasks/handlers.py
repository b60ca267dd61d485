"""Business logic for the three onboarding topics.

Each handler classifies its own faults: nothing raised inside `execute`
escapes uncategorised.
"""

from __future__ import annotations

import logging
import random
import re
import string
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import ClassVar, Protocol

from camunda_onboarding.worker.clock import Clock, utc_now
from camunda_onboarding.worker.engine.base import ExternalTask
from camunda_onboarding.worker.tasks.outcome import (
    Completed,
    DomainError,
    Outcome,
    TechnicalFailure,
)
from camunda_onboarding.worker.topics import CREATE_ACCOUNT, HANDLE_ERROR, VALIDATE_DATA

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
VALID_DOCUMENT_TYPES: tuple[str, ...] = ("ID", "PASSPORT", "DRIVING_LICENSE")
VALIDATION_ERROR = "VALIDATION_ERROR"

ACCOUNT_ID_PREFIX = "ACC-"
ACCOUNT_ID_ALPHABET = string.ascii_uppercase + string.digits
ACCOUNT_STATUS_ACTIVE = "ACTIVE"
ONBOARDING_STATUS_FAILED_VALIDATION = "FAILED_VALIDATION"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_ERROR_DETAIL_CHARS = 1000


class TaskHandler(Protocol):
    """Business logic for one topic. Must never raise out of `execute`."""

    topic: ClassVar[str]

    def execute(self, task: ExternalTask) -> Outcome: ...


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    message: str


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_customer_data(
    customer_name: object, email: object, document_type: object
) -> ValidationResult:
    """Check the onboarding request fields in order: name, email, document type.

    Non-string values are not coerced; they fail loudly and are treated as a
    technical failure by the caller.
    """

    errors: list[str] = []

    if _is_blank(customer_name):
        errors.append("Customer name is required.")
    elif len(customer_name.strip()) < 2:  # type: ignore[union-attr]
        errors.append("Customer name must be at least 2 characters.")

    if _is_blank(email):
        errors.append("Email is required.")
    elif EMAIL_PATTERN.fullmatch(email) is None:  # type: ignore[arg-type]
        errors.append("Invalid email format.")

    if _is_blank(document_type):
        errors.append("Document type is required.")
    elif document_type.strip().upper() not in VALID_DOCUMENT_TYPES:  # type: ignore[union-attr]
        errors.append(
            f"Invalid document type. Allowed: {', '.join(VALID_DOCUMENT_TYPES)}."
        )

    if not errors:
        return ValidationResult(is_valid=True, message="All validations passed successfully.")
    return ValidationResult(is_valid=False, message=" ".join(errors).strip())


def format_error_detail(error: BaseException, *, limit: int = MAX_ERROR_DETAIL_CHARS) -> str:
    """Render a traceback for the engine, truncated to roughly `limit` characters."""

    detail = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    if len(detail) > limit:
        return detail[:limit] + "\n... (truncated)"
    return detail


@dataclass(frozen=True, slots=True)
class ValidateDataHandler:
    """Validate customer data.

    Invalid data is a domain error (error boundary path). Anything unexpected
    is a technical failure and goes through the retry budget.
    """

    topic: ClassVar[str] = VALIDATE_DATA

    clock: Clock = utc_now

    def execute(self, task: ExternalTask) -> Outcome:
        try:
            result = validate_customer_data(
                task.variable("customerName"),
                task.variable("email"),
                task.variable("documentType"),
            )
        except Exception as e:  # noqa: BLE001
            logger.exception(
                "Technical error while validating customer data",
                extra={"task_id": task.id, "business_key": task.business_key},
            )
            return TechnicalFailure(message=f"Technical error: {e}", detail=repr(e))

        if result.is_valid:
            logger.info(
                "Validation passed",
                extra={"task_id": task.id, "business_key": task.business_key},
            )
            return Completed(
                variables={
                    "isValid": True,
                    "validationMessage": result.message,
                    "validatedAt": int(self.clock().timestamp() * 1000),
                }
            )

        logger.warning(
            "Validation failed",
            extra={
                "task_id": task.id,
                "business_key": task.business_key,
                "reason": result.message,
            },
        )
        return DomainError(
            code=VALIDATION_ERROR,
            message=result.message,
            variables={
                "isValid": False,
                "validationMessage": result.message,
                "errorCode": VALIDATION_ERROR,
            },
        )


def generate_account_id(rng: random.Random) -> str:
    """`ACC-` followed by 8 uppercase alphanumerics. Collisions are not checked."""

    return ACCOUNT_ID_PREFIX + "".join(rng.choices(ACCOUNT_ID_ALPHABET, k=8))


@dataclass(frozen=True, slots=True)
class CreateAccountHandler:
    """Create the customer account in the (simulated) backend system.

    A redelivered task creates a second account; duplicates are accepted.
    """

    topic: ClassVar[str] = CREATE_ACCOUNT

    delay_seconds: float = 1.0
    sleep: Callable[[float], None] = time.sleep
    rng: random.Random = field(default_factory=random.Random)  # not security sensitive
    clock: Clock = utc_now

    def execute(self, task: ExternalTask) -> Outcome:
        try:
            customer_name = task.variable("customerName")
            email = task.variable("email")

            logger.info(
                "Creating account in backend system",
                extra={
                    "task_id": task.id,
                    "business_key": task.business_key,
                    "documents_approved": task.variable("documentsApproved"),
                },
            )
            if self.delay_seconds > 0:
                self.sleep(self.delay_seconds)

            account_id = generate_account_id(self.rng)
            created_at = self.clock().strftime(TIMESTAMP_FORMAT)
        except Exception as e:  # noqa: BLE001
            logger.exception(
                "Account creation failed",
                extra={"task_id": task.id, "business_key": task.business_key},
            )
            return TechnicalFailure(
                message=f"Account creation failed: {e}",
                detail=format_error_detail(e),
            )

        logger.info(
            "Account created",
            extra={
                "task_id": task.id,
                "business_key": task.business_key,
                "account_id": account_id,
                "account_status": ACCOUNT_STATUS_ACTIVE,
            },
        )
        return Completed(
            variables={
                "accountId": account_id,
                "accountStatus": ACCOUNT_STATUS_ACTIVE,
                "accountCreatedAt": created_at,
                "accountEmail": email,
                "accountHolder": customer_name,
                "onboardingCompleted": True,
            }
        )


@dataclass(frozen=True, slots=True)
class HandleErrorHandler:
    """Record a validation failure on the process.

    Always completes, even when its own processing fails, so the error
    boundary path cannot stall.
    """

    topic: ClassVar[str] = HANDLE_ERROR

    clock: Clock = utc_now

    def execute(self, task: ExternalTask) -> Outcome:
        try:
            validation_message = task.variable("validationMessage")
            logger.warning(
                "Handling onboarding error",
                extra={
                    "task_id": task.id,
                    "business_key": task.business_key,
                    "error_code": task.variable("errorCode"),
                    "validation_message": validation_message,
                },
            )
            return Completed(
                variables={
                    "errorOccurred": True,
                    "errorMessage": (
                        str(validation_message) if validation_message else "Unknown error"
                    ),
                    "errorHandledAt": self.clock().strftime(TIMESTAMP_FORMAT),
                    "errorHandledBy": "HandleErrorWorker",
                    "onboardingCompleted": False,
                    "onboardingStatus": ONBOARDING_STATUS_FAILED_VALIDATION,
                }
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Error handler failed", extra={"task_id": task.id})
            return Completed(
                variables={
                    "errorOccurred": True,
                    "errorMessage": f"Error handler failed: {e}",
                    "errorHandledAt": utc_now().strftime(TIMESTAMP_FORMAT),
                    "onboardingCompleted": False,
                    "onboardingStatus": ONBOARDING_STATUS_FAILED_VALIDATION,
                }
            )


def build_handler_table(*, create_account_delay_seconds: float = 1.0) -> dict[str, TaskHandler]:
    """The closed topic -> handler dispatch table."""

    handlers: list[TaskHandler] = [
        ValidateDataHandler(),
        CreateAccountHandler(delay_seconds=create_account_delay_seconds),
        HandleErrorHandler(),
    ]
    return {handler.topic: handler for handler in handlers}
