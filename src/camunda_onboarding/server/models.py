"""Pydantic models for the REST server.

Field names are camelCase on the wire, matching the engine's variable names.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartProcessRequest(ApiModel):
    customer_name: str | None = None
    email: str | None = None
    document_type: str | None = None


class ProcessInstanceResponse(ApiModel):
    process_instance_id: str | None = None
    business_key: str | None = None
    is_ended: bool = False
    message: str


class PendingTask(ApiModel):
    task_id: str
    task_name: str


class ProcessStatusResponse(ApiModel):
    process_instance_id: str
    business_key: str | None = None
    state: str
    active_step: str | None = None
    is_running: bool
    is_ended: bool
    end_reason: str | None = None
    incident: str | None = None
    variables: dict[str, object] = Field(default_factory=dict)
    pending_tasks: list[PendingTask] = Field(default_factory=list)


class ReviewTaskResponse(ApiModel):
    task_id: str
    task_name: str
    process_instance_id: str
    business_key: str | None = None
    create_time: datetime | None = None
    variables: dict[str, object] = Field(default_factory=dict)


class CompleteTaskRequest(ApiModel):
    documents_approved: bool
    reviewer_comments: str = ""


class InstanceSummary(ApiModel):
    process_instance_id: str
    business_key: str | None = None
    state: str
    active_step: str | None = None
    incident: str | None = None


class ActionResponse(ApiModel):
    success: bool
    message: str
    task_id: str | None = None
    process_instance_id: str | None = None
