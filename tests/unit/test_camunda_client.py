from __future__ import annotations

import json
from unittest.mock import Mock

import pytest
import requests

from camunda_onboarding.worker.engine.camunda import CamundaRestClient
from camunda_onboarding.worker.errors import (
    EngineError,
    EngineUnavailable,
    InstanceNotFoundError,
    LeaseLostError,
    ReviewTaskNotFoundError,
    TaskNotFoundError,
)
from camunda_onboarding.worker.workflow.state_machine import OnboardingState

BASE_URL = "http://camunda:8080/engine-rest"


def _response(status: int = 200, body: object | None = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = b"" if body is None else json.dumps(body).encode("utf-8")
    return resp


@pytest.fixture
def session() -> Mock:
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session: Mock) -> CamundaRestClient:
    return CamundaRestClient(base_url=BASE_URL + "/", session=session, request_timeout_seconds=5)


def test_fetch_and_lock_payload_and_parsing(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(
        200,
        [
            {
                "id": "t-1",
                "topicName": "validateData",
                "processInstanceId": "pi-1",
                "businessKey": "CUST-ABCDEF12",
                "workerId": "worker-1",
                "retries": None,
                "lockExpirationTime": "2025-01-01T12:00:30.000+0000",
                "variables": {
                    "email": {"value": "amit@example.com", "type": "String"},
                    "isValid": {"value": True, "type": "Boolean"},
                },
            }
        ],
    )

    (task,) = client.fetch_and_lock(
        worker_id="worker-1",
        topics={"validateData": 30_000},
        max_tasks=5,
        async_response_timeout_ms=20_000,
    )

    args, kwargs = session.request.call_args
    assert args == ("POST", f"{BASE_URL}/external-task/fetchAndLock")
    assert kwargs["json"] == {
        "workerId": "worker-1",
        "maxTasks": 5,
        "usePriority": True,
        "asyncResponseTimeout": 20_000,
        "topics": [{"topicName": "validateData", "lockDuration": 30_000}],
    }
    assert kwargs["timeout"] == 25.0
    assert task.id == "t-1"
    assert task.business_key == "CUST-ABCDEF12"
    assert task.variables == {"email": "amit@example.com", "isValid": True}
    assert task.retries is None
    assert task.lock_expiration_time is not None
    assert task.lock_expiration_time.second == 30


def test_connection_error_is_engine_unavailable(client: CamundaRestClient, session: Mock) -> None:
    session.request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(EngineUnavailable, match="refused"):
        client.fetch_and_lock(
            worker_id="w", topics={"validateData": 1}, max_tasks=1, async_response_timeout_ms=0
        )


def test_non_json_fetch_body_is_engine_error(client: CamundaRestClient, session: Mock) -> None:
    resp = requests.Response()
    resp.status_code = 200
    resp._content = b"<html>proxy error</html>"
    session.request.return_value = resp

    with pytest.raises(EngineError, match="non-JSON"):
        client.fetch_and_lock(
            worker_id="w", topics={"validateData": 1}, max_tasks=1, async_response_timeout_ms=0
        )


def test_server_error_is_engine_unavailable(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(503, {"message": "Service Unavailable"})

    with pytest.raises(EngineUnavailable):
        client.complete("t-1", worker_id="w", variables={})


def test_complete_sends_typed_variables(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(204)

    client.complete("t-1", worker_id="w", variables={"accountId": "ACC-1", "attempts": 2})

    args, kwargs = session.request.call_args
    assert args == ("POST", f"{BASE_URL}/external-task/t-1/complete")
    assert kwargs["json"] == {
        "workerId": "w",
        "variables": {
            "accountId": {"value": "ACC-1", "type": "String"},
            "attempts": {"value": 2, "type": "Integer"},
        },
    }


def test_bpmn_error_payload(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(204)

    client.throw_business_error(
        "t-1",
        worker_id="w",
        error_code="VALIDATION_ERROR",
        error_message="Invalid email",
        variables={"errorCode": "VALIDATION_ERROR"},
    )

    args, kwargs = session.request.call_args
    assert args[1].endswith("/external-task/t-1/bpmnError")
    assert kwargs["json"]["errorCode"] == "VALIDATION_ERROR"
    assert kwargs["json"]["errorMessage"] == "Invalid email"


def test_failure_payload(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(204)

    client.report_failure(
        "t-1",
        worker_id="w",
        error_message="backend down",
        error_details="trace",
        retries=2,
        retry_timeout_ms=10_000,
    )

    _, kwargs = session.request.call_args
    assert kwargs["json"] == {
        "workerId": "w",
        "errorMessage": "backend down",
        "errorDetails": "trace",
        "retries": 2,
        "retryTimeout": 10_000,
    }


@pytest.mark.parametrize(
    ("status", "message", "error"),
    [
        (404, "External task with id t-1 does not exist", TaskNotFoundError),
        (
            500,
            "External Task t-1 cannot be completed by worker 'w'. It is locked by worker 'x'.",
            LeaseLostError,
        ),
        (400, "Task lock has expired", LeaseLostError),
        (400, "Bad variables", EngineError),
    ],
)
def test_report_error_mapping(
    client: CamundaRestClient,
    session: Mock,
    status: int,
    message: str,
    error: type[Exception],
) -> None:
    session.request.return_value = _response(status, {"type": "RestException", "message": message})

    with pytest.raises(error):
        client.complete("t-1", worker_id="w", variables={})


def test_start_instance(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(200, {"id": "pi-9"})

    instance_id = client.start_instance("CUST-1", {"customerName": "Amit"})

    args, kwargs = session.request.call_args
    assert instance_id == "pi-9"
    assert args[1] == f"{BASE_URL}/process-definition/key/customer_onboarding/start"
    assert kwargs["json"] == {
        "businessKey": "CUST-1",
        "variables": {"customerName": {"value": "Amit", "type": "String"}},
    }


def test_running_instance_state(client: CamundaRestClient, session: Mock) -> None:
    session.request.side_effect = [
        _response(200, {"id": "pi-1", "businessKey": "CUST-1", "ended": False}),
        _response(200, {"isValid": {"value": True, "type": "Boolean"}}),
        _response(
            200,
            {
                "activityId": "customer_onboarding",
                "childActivityInstances": [
                    {"activityId": "reviewDocuments", "childActivityInstances": []}
                ],
            },
        ),
        _response(200, []),
    ]

    status = client.get_instance_state("pi-1")

    assert status.state == OnboardingState.AWAITING_REVIEW
    assert status.active_step == "reviewDocuments"
    assert status.business_key == "CUST-1"
    assert not status.ended
    assert status.incident is None


def test_ended_instance_state_from_history(client: CamundaRestClient, session: Mock) -> None:
    session.request.side_effect = [
        _response(404, {"message": "not found"}),
        _response(200, {"id": "pi-1", "businessKey": "CUST-1", "deleteReason": None}),
        _response(
            200,
            [
                {"name": "documentsApproved", "value": True, "type": "Boolean"},
                {"name": "onboardingCompleted", "value": True, "type": "Boolean"},
            ],
        ),
    ]

    status = client.get_instance_state("pi-1")

    assert status.ended
    assert status.state == OnboardingState.COMPLETED
    assert status.active_step is None


def test_unknown_instance(client: CamundaRestClient, session: Mock) -> None:
    session.request.side_effect = [_response(404), _response(404)]

    with pytest.raises(InstanceNotFoundError):
        client.get_instance_state("missing")


def test_submit_review_decision(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(204)

    client.submit_review_decision("rt-1", approved=False, comments="blurry")

    args, kwargs = session.request.call_args
    assert args[1] == f"{BASE_URL}/task/rt-1/complete"
    assert kwargs["json"]["variables"]["documentsApproved"] == {"value": False, "type": "Boolean"}


def test_submit_review_decision_unknown_task(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(404, {"message": "not found"})

    with pytest.raises(ReviewTaskNotFoundError):
        client.submit_review_decision("rt-1", approved=True, comments="")


def test_cancel_instance(client: CamundaRestClient, session: Mock) -> None:
    session.request.return_value = _response(204)

    client.cancel_instance("pi-1", "Cancelled via API")

    args, _ = session.request.call_args
    assert args == ("DELETE", f"{BASE_URL}/process-instance/pi-1")


def test_list_review_tasks(client: CamundaRestClient, session: Mock) -> None:
    session.request.side_effect = [
        _response(
            200,
            [
                {
                    "id": "rt-1",
                    "name": "Review Documents",
                    "processInstanceId": "pi-1",
                    "created": "2025-01-01T12:00:00.000+0000",
                }
            ],
        ),
        _response(200, {"businessKey": {"value": "CUST-1", "type": "String"}}),
    ]

    (task,) = client.list_review_tasks()

    assert task.task_id == "rt-1"
    assert task.name == "Review Documents"
    assert task.business_key == "CUST-1"
    assert task.created_at is not None
