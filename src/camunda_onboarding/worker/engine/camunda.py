"""Camunda 7 REST API client.

Implements both the lock-authority side used by the workers (fetch and lock,
complete, BPMN error, failure) and the process-management side used by the CLI
and the REST server. Transport problems surface as `EngineUnavailable`.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from camunda_onboarding.worker.engine.base import ExternalTask, InstanceStatus, ReviewTask
from camunda_onboarding.worker.engine.variables import (
    from_typed_value,
    from_typed_variables,
    parse_engine_date,
    to_typed_variables,
)
from camunda_onboarding.worker.errors import (
    EngineError,
    EngineUnavailable,
    InstanceNotFoundError,
    LeaseLostError,
    ReviewTaskNotFoundError,
    TaskNotFoundError,
)
from camunda_onboarding.worker.workflow.state_machine import ACTIVE_STEPS, infer_state

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080/engine-rest"


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return resp.text[:500]


def _task_from_json(data: dict[str, Any]) -> ExternalTask:
    retries = data.get("retries")
    return ExternalTask(
        id=str(data["id"]),
        topic=str(data.get("topicName") or ""),
        process_instance_id=str(data.get("processInstanceId") or ""),
        business_key=data.get("businessKey"),
        variables=from_typed_variables(data.get("variables")),
        retries=retries if isinstance(retries, int) else None,
        lock_expiration_time=parse_engine_date(data.get("lockExpirationTime")),
        worker_id=data.get("workerId"),
    )


class CamundaRestClient:
    """Small wrapper around the Camunda engine REST API for the calls we need."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        process_definition_key: str = "customer_onboarding",
        request_timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Camunda base URL is required")
        self._base_url = base_url.rstrip("/")
        self.process_definition_key = process_definition_key
        self._timeout = request_timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "camunda-onboarding-worker",
            }
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: object | None = None,
        params: dict[str, object] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        url = self._url(path)
        try:
            resp = self._session.request(
                method, url, json=json, params=params, timeout=timeout or self._timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise EngineUnavailable(f"{method} {url} failed: {e}") from e
        if resp.status_code >= 500 and "lock" not in _error_message(resp).lower():
            raise EngineUnavailable(
                f"{method} {url} returned {resp.status_code}: {_error_message(resp)}"
            )
        return resp

    # -- lock authority ---------------------------------------------------

    def fetch_and_lock(
        self,
        *,
        worker_id: str,
        topics: dict[str, int],
        max_tasks: int,
        async_response_timeout_ms: int,
    ) -> list[ExternalTask]:
        payload = {
            "workerId": worker_id,
            "maxTasks": max_tasks,
            "usePriority": True,
            "asyncResponseTimeout": async_response_timeout_ms,
            "topics": [
                {"topicName": topic, "lockDuration": lock_duration}
                for topic, lock_duration in topics.items()
            ],
        }
        # The engine holds the request open for up to asyncResponseTimeout.
        timeout = async_response_timeout_ms / 1000.0 + self._timeout
        resp = self._request("POST", "external-task/fetchAndLock", json=payload, timeout=timeout)
        if not resp.ok:
            raise EngineError(f"fetchAndLock rejected ({resp.status_code}): {_error_message(resp)}")
        try:
            data = resp.json()
        except ValueError as e:
            raise EngineError(f"fetchAndLock returned a non-JSON body: {e}") from e
        if not isinstance(data, list):
            return []
        tasks = [_task_from_json(item) for item in data if isinstance(item, dict)]
        if tasks:
            logger.debug(
                "Fetched and locked tasks",
                extra={"topics": list(topics), "task_ids": [t.id for t in tasks]},
            )
        return tasks

    def complete(self, task_id: str, *, worker_id: str, variables: dict[str, object]) -> None:
        resp = self._request(
            "POST",
            f"external-task/{task_id}/complete",
            json={"workerId": worker_id, "variables": to_typed_variables(variables)},
        )
        self._raise_for_report(resp, task_id)

    def throw_business_error(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_code: str,
        error_message: str,
        variables: dict[str, object],
    ) -> None:
        resp = self._request(
            "POST",
            f"external-task/{task_id}/bpmnError",
            json={
                "workerId": worker_id,
                "errorCode": error_code,
                "errorMessage": error_message,
                "variables": to_typed_variables(variables),
            },
        )
        self._raise_for_report(resp, task_id)

    def report_failure(
        self,
        task_id: str,
        *,
        worker_id: str,
        error_message: str,
        error_details: str,
        retries: int,
        retry_timeout_ms: int,
    ) -> None:
        resp = self._request(
            "POST",
            f"external-task/{task_id}/failure",
            json={
                "workerId": worker_id,
                "errorMessage": error_message,
                "errorDetails": error_details,
                "retries": retries,
                "retryTimeout": retry_timeout_ms,
            },
        )
        self._raise_for_report(resp, task_id)

    def _raise_for_report(self, resp: requests.Response, task_id: str) -> None:
        if resp.ok:
            return
        message = _error_message(resp)
        if resp.status_code == 404:
            raise TaskNotFoundError(f"External task {task_id} not found: {message}")
        if "lock" in message.lower():
            raise LeaseLostError(f"External task {task_id}: {message}")
        raise EngineError(
            f"External task {task_id} report rejected ({resp.status_code}): {message}"
        )

    # -- process management -----------------------------------------------

    def start_instance(self, business_key: str, variables: dict[str, object]) -> str:
        resp = self._request(
            "POST",
            f"process-definition/key/{self.process_definition_key}/start",
            json={"businessKey": business_key, "variables": to_typed_variables(variables)},
        )
        if not resp.ok:
            raise EngineError(
                f"Failed to start process ({resp.status_code}): {_error_message(resp)}"
            )
        instance_id = str(resp.json()["id"])
        logger.info(
            "Process instance started",
            extra={"instance_id": instance_id, "business_key": business_key},
        )
        return instance_id

    def get_instance_state(self, instance_id: str) -> InstanceStatus:
        resp = self._request("GET", f"process-instance/{instance_id}")
        if resp.status_code == 404:
            return self._get_ended_instance_state(instance_id)
        if not resp.ok:
            raise EngineError(f"Failed to get process instance ({resp.status_code})")
        instance = resp.json()

        var_resp = self._request("GET", f"process-instance/{instance_id}/variables")
        variables = from_typed_variables(var_resp.json()) if var_resp.ok else {}
        state = infer_state(variables, ended=False)
        known_steps = set(ACTIVE_STEPS.values())
        active = [a for a in self._active_activity_ids(instance_id) if a in known_steps]
        return InstanceStatus(
            instance_id=instance_id,
            business_key=instance.get("businessKey"),
            state=state,
            active_step=active[0] if active else ACTIVE_STEPS.get(state),
            ended=bool(instance.get("ended", False)),
            incident=self._first_incident_message(instance_id),
            variables=variables,
        )

    def _get_ended_instance_state(self, instance_id: str) -> InstanceStatus:
        resp = self._request("GET", f"history/process-instance/{instance_id}")
        if resp.status_code == 404:
            raise InstanceNotFoundError(f"Process instance {instance_id} not found")
        if not resp.ok:
            raise EngineError(f"Failed to get historic process instance ({resp.status_code})")
        historic = resp.json()

        var_resp = self._request(
            "GET", "history/variable-instance", params={"processInstanceId": instance_id}
        )
        variables: dict[str, object] = {}
        if var_resp.ok:
            for item in var_resp.json():
                if isinstance(item, dict) and isinstance(item.get("name"), str):
                    variables[item["name"]] = from_typed_value(item)
        return InstanceStatus(
            instance_id=instance_id,
            business_key=historic.get("businessKey"),
            state=infer_state(variables, ended=True),
            active_step=None,
            ended=True,
            end_reason=historic.get("deleteReason"),
            variables=variables,
        )

    def _active_activity_ids(self, instance_id: str) -> list[str]:
        resp = self._request("GET", f"process-instance/{instance_id}/activity-instances")
        if not resp.ok:
            return []
        ids: list[str] = []
        pending = [resp.json()]
        while pending:
            node = pending.pop()
            if not isinstance(node, dict):
                continue
            children = node.get("childActivityInstances") or []
            if not children and isinstance(node.get("activityId"), str):
                ids.append(node["activityId"])
            pending.extend(children)
        return ids

    def _first_incident_message(self, instance_id: str) -> str | None:
        resp = self._request("GET", "incident", params={"processInstanceId": instance_id})
        if not resp.ok:
            return None
        incidents = resp.json()
        if isinstance(incidents, list) and incidents and isinstance(incidents[0], dict):
            message = incidents[0].get("incidentMessage")
            return str(message) if message else "incident"
        return None

    def submit_review_decision(self, task_id: str, *, approved: bool, comments: str) -> None:
        resp = self._request(
            "POST",
            f"task/{task_id}/complete",
            json={
                "variables": to_typed_variables(
                    {"documentsApproved": approved, "reviewerComments": comments}
                )
            },
        )
        if resp.status_code == 404:
            raise ReviewTaskNotFoundError(f"Task not found: {task_id}")
        if not resp.ok:
            raise EngineError(
                f"Failed to complete task ({resp.status_code}): {_error_message(resp)}"
            )
        logger.info("Review decision submitted", extra={"task_id": task_id, "approved": approved})

    def cancel_instance(self, instance_id: str, reason: str) -> None:
        resp = self._request("DELETE", f"process-instance/{instance_id}")
        if resp.status_code == 404:
            raise InstanceNotFoundError(f"Process instance {instance_id} not found")
        if not resp.ok:
            raise EngineError(
                f"Failed to delete process instance ({resp.status_code}): {_error_message(resp)}"
            )
        logger.info(
            "Process instance cancelled",
            extra={"instance_id": instance_id, "reason": reason},
        )

    def list_review_tasks(self) -> list[ReviewTask]:
        resp = self._request(
            "GET", "task", params={"processDefinitionKey": self.process_definition_key}
        )
        if not resp.ok:
            raise EngineError(f"Failed to list tasks ({resp.status_code})")
        tasks: list[ReviewTask] = []
        for item in resp.json():
            if not isinstance(item, dict):
                continue
            task_id = str(item["id"])
            var_resp = self._request("GET", f"task/{task_id}/variables")
            variables = from_typed_variables(var_resp.json()) if var_resp.ok else {}
            created = item.get("created")
            business_key = variables.get("businessKey")
            tasks.append(
                ReviewTask(
                    task_id=task_id,
                    name=str(item.get("name") or ""),
                    process_instance_id=str(item.get("processInstanceId") or ""),
                    business_key=business_key if isinstance(business_key, str) else None,
                    created_at=parse_engine_date(created) if isinstance(created, str) else None,
                    variables=variables,
                )
            )
        return tasks

    def list_instances(self) -> list[InstanceStatus]:
        resp = self._request(
            "GET",
            "process-instance",
            params={"processDefinitionKey": self.process_definition_key},
        )
        if not resp.ok:
            raise EngineError(f"Failed to list process instances ({resp.status_code})")
        return [
            self.get_instance_state(str(item["id"]))
            for item in resp.json()
            if isinstance(item, dict) and "id" in item
        ]
