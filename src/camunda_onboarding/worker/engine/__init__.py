"""Workflow engine adapters: the Camunda REST client and the in-process engine."""

from camunda_onboarding.worker.engine.base import (
    ExternalTask,
    InstanceStatus,
    ProcessGateway,
    ReviewTask,
    TaskAuthority,
)

__all__ = [
    "ExternalTask",
    "InstanceStatus",
    "ProcessGateway",
    "ReviewTask",
    "TaskAuthority",
]
