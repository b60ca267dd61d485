"""Unit tests for the onboarding task handlers."""

from __future__ import annotations

import random
import re
from datetime import UTC, datetime

import pytest

from camunda_onboarding.worker.tasks.handlers import (
    CreateAccountHandler,
    HandleErrorHandler,
    ValidateDataHandler,
    build_handler_table,
    format_error_detail,
    generate_account_id,
    validate_customer_data,
)
from camunda_onboarding.worker.tasks.outcome import Completed, DomainError, TechnicalFailure

ACCOUNT_ID = re.compile(r"ACC-[A-Z0-9]{8}")


def _fixed_clock() -> datetime:
    return datetime(2025, 3, 4, 5, 6, 7, tzinfo=UTC)


@pytest.mark.parametrize(
    ("name", "email", "document_type", "message"),
    [
        (None, "a@b.co", "ID", "Customer name is required."),
        ("   ", "a@b.co", "ID", "Customer name is required."),
        (" A ", "a@b.co", "ID", "Customer name must be at least 2 characters."),
        ("Amit", "", "ID", "Email is required."),
        ("Amit", "amit@example", "ID", "Invalid email format."),
        ("Amit", "amit@example.com ", "ID", "Invalid email format."),
        ("Amit", "amit@example.com", None, "Document type is required."),
        (
            "Amit",
            "amit@example.com",
            "VISA",
            "Invalid document type. Allowed: ID, PASSPORT, DRIVING_LICENSE.",
        ),
    ],
)
def test_validation_rules(name, email, document_type, message) -> None:
    result = validate_customer_data(name, email, document_type)

    assert not result.is_valid
    assert result.message == message


def test_validation_accepts_document_type_case_insensitively() -> None:
    result = validate_customer_data("Amit Sharma", "amit@example.com", "  passport ")

    assert result.is_valid
    assert result.message == "All validations passed successfully."


def test_validation_joins_messages_in_field_order() -> None:
    result = validate_customer_data("", "not-an-email", "")

    assert result.message == (
        "Customer name is required. Invalid email format. Document type is required."
    )


def test_validate_data_success_completes(make_task) -> None:
    task = make_task(
        variables={
            "customerName": "Amit Sharma",
            "email": "amit@example.com",
            "documentType": "ID",
        }
    )

    outcome = ValidateDataHandler(clock=_fixed_clock).execute(task)

    assert isinstance(outcome, Completed)
    assert outcome.variables == {
        "isValid": True,
        "validationMessage": "All validations passed successfully.",
        "validatedAt": int(_fixed_clock().timestamp() * 1000),
    }


def test_validate_data_failure_is_a_domain_error(make_task) -> None:
    task = make_task(
        variables={"customerName": "A", "email": "amit@example.com", "documentType": "ID"}
    )

    outcome = ValidateDataHandler().execute(task)

    assert isinstance(outcome, DomainError)
    assert outcome.code == "VALIDATION_ERROR"
    assert outcome.message == "Customer name must be at least 2 characters."
    assert outcome.variables == {
        "isValid": False,
        "validationMessage": "Customer name must be at least 2 characters.",
        "errorCode": "VALIDATION_ERROR",
    }


def test_validate_data_unexpected_input_is_a_technical_failure(make_task) -> None:
    task = make_task(
        variables={"customerName": 42, "email": "amit@example.com", "documentType": "ID"}
    )

    outcome = ValidateDataHandler().execute(task)

    assert isinstance(outcome, TechnicalFailure)
    assert outcome.message.startswith("Technical error: ")
    assert outcome.remaining_retries is None


def test_create_account_produces_account(make_task) -> None:
    sleeps: list[float] = []
    handler = CreateAccountHandler(
        delay_seconds=1.0, sleep=sleeps.append, rng=random.Random(7), clock=_fixed_clock
    )
    task = make_task(
        topic="createAccount",
        variables={"customerName": "Amit Sharma", "email": "amit@example.com"},
    )

    outcome = handler.execute(task)

    assert isinstance(outcome, Completed)
    assert sleeps == [1.0]
    assert ACCOUNT_ID.fullmatch(str(outcome.variables["accountId"]))
    assert outcome.variables["accountStatus"] == "ACTIVE"
    assert outcome.variables["accountCreatedAt"] == "2025-03-04 05:06:07"
    assert outcome.variables["accountEmail"] == "amit@example.com"
    assert outcome.variables["accountHolder"] == "Amit Sharma"
    assert outcome.variables["onboardingCompleted"] is True
    assert "errorCode" not in outcome.variables


def test_create_account_failure_is_a_technical_failure_with_truncated_trace(make_task) -> None:
    def broken_sleep(_: float) -> None:
        raise RuntimeError("backend down " + "x" * 3000)

    handler = CreateAccountHandler(sleep=broken_sleep)

    outcome = handler.execute(make_task(topic="createAccount"))

    assert isinstance(outcome, TechnicalFailure)
    assert outcome.message.startswith("Account creation failed: backend down")
    assert outcome.detail.endswith("\n... (truncated)")
    assert len(outcome.detail) <= 1000 + len("\n... (truncated)")


def test_generated_account_ids_match_pattern() -> None:
    rng = random.Random(1234)

    ids = [generate_account_id(rng) for _ in range(10_000)]

    assert all(ACCOUNT_ID.fullmatch(account_id) for account_id in ids)
    assert len(set(ids)) == len(ids)


def test_handle_error_always_completes(make_task) -> None:
    task = make_task(
        topic="handleError",
        variables={"validationMessage": "Invalid email format.", "errorCode": "VALIDATION_ERROR"},
    )

    outcome = HandleErrorHandler(clock=_fixed_clock).execute(task)

    assert isinstance(outcome, Completed)
    assert outcome.variables == {
        "errorOccurred": True,
        "errorMessage": "Invalid email format.",
        "errorHandledAt": "2025-03-04 05:06:07",
        "errorHandledBy": "HandleErrorWorker",
        "onboardingCompleted": False,
        "onboardingStatus": "FAILED_VALIDATION",
    }


def test_handle_error_without_message_uses_default(make_task) -> None:
    outcome = HandleErrorHandler().execute(make_task(topic="handleError"))

    assert isinstance(outcome, Completed)
    assert outcome.variables["errorMessage"] == "Unknown error"


def test_handle_error_completes_even_when_it_fails(make_task) -> None:
    def broken_clock() -> datetime:
        raise RuntimeError("clock broke")

    outcome = HandleErrorHandler(clock=broken_clock).execute(make_task(topic="handleError"))

    assert isinstance(outcome, Completed)
    assert outcome.variables["errorMessage"] == "Error handler failed: clock broke"
    assert outcome.variables["onboardingCompleted"] is False


def test_handler_table_covers_every_topic() -> None:
    table = build_handler_table(create_account_delay_seconds=0)

    assert set(table) == {"validateData", "createAccount", "handleError"}
    assert all(handler.topic == topic for topic, handler in table.items())


def test_format_error_detail_keeps_short_traces() -> None:
    try:
        raise ValueError("short")
    except ValueError as e:
        detail = format_error_detail(e)

    assert "ValueError: short" in detail
    assert not detail.endswith("(truncated)")
