"""FastAPI app factory.

Endpoints are thin wrappers over a `ProcessGateway`: the Camunda REST client, or
an in-process engine whose workers run for the lifetime of the app.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from camunda_onboarding import __version__
from camunda_onboarding.server.config import ServerSettings
from camunda_onboarding.server.models import (
    ActionResponse,
    CompleteTaskRequest,
    InstanceSummary,
    PendingTask,
    ProcessInstanceResponse,
    ProcessStatusResponse,
    ReviewTaskResponse,
    StartProcessRequest,
)
from camunda_onboarding.worker.config import WorkerSettings
from camunda_onboarding.worker.engine.base import InstanceStatus, ProcessGateway, ReviewTask
from camunda_onboarding.worker.engine.camunda import CamundaRestClient
from camunda_onboarding.worker.engine.local import CANCELLED_VIA_API, LocalEngine
from camunda_onboarding.worker.errors import (
    EngineError,
    EngineUnavailable,
    InstanceNotFoundError,
    ReviewTaskNotFoundError,
)
from camunda_onboarding.worker.main import build_scheduler
from camunda_onboarding.worker.tasks.scheduler import ExternalTaskScheduler
from camunda_onboarding.worker.workflow.archive import InstanceArchive
from camunda_onboarding.worker.workflow.start import start_onboarding

logger = logging.getLogger(__name__)


def _to_review_task(task: ReviewTask) -> ReviewTaskResponse:
    return ReviewTaskResponse(
        task_id=task.task_id,
        task_name=task.name,
        process_instance_id=task.process_instance_id,
        business_key=task.business_key,
        create_time=task.created_at,
        variables=task.variables,
    )


def _to_summary(status: InstanceStatus) -> InstanceSummary:
    return InstanceSummary(
        process_instance_id=status.instance_id,
        business_key=status.business_key,
        state=status.state.value,
        active_step=status.active_step,
        incident=status.incident,
    )


def _build_gateway(
    settings: ServerSettings,
) -> tuple[ProcessGateway, ExternalTaskScheduler | None]:
    if settings.engine == "local":
        archive = InstanceArchive(settings.archive_path, settings.archive_max_records)
        engine = LocalEngine(archive=archive)
        worker_settings = WorkerSettings().model_copy(update={"async_response_timeout_ms": 1_000})
        return engine, build_scheduler(worker_settings, engine)
    client = CamundaRestClient(
        base_url=settings.camunda_base_url,
        process_definition_key=settings.process_definition_key,
    )
    return client, None


def create_app(gateway: ProcessGateway | None = None) -> FastAPI:
    settings = ServerSettings()
    scheduler: ExternalTaskScheduler | None = None
    if gateway is None:
        gateway, scheduler = _build_gateway(settings)
    process_gateway: ProcessGateway = gateway

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop(timeout=10.0)
            if isinstance(process_gateway, CamundaRestClient):
                process_gateway.close()

    app = FastAPI(
        title="Customer Onboarding",
        version=__version__,
        description="REST API over the customer onboarding process.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.gateway = process_gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EngineUnavailable)
    async def engine_unavailable(_: Request, exc: EngineUnavailable) -> JSONResponse:
        logger.warning("Engine unavailable", extra={"error": str(exc)})
        return JSONResponse(status_code=503, content={"detail": f"Engine unavailable: {exc}"})

    @app.exception_handler(EngineError)
    async def engine_error(_: Request, exc: EngineError) -> JSONResponse:
        logger.error("Engine request failed", extra={"error": str(exc)})
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/process/start", response_model=ProcessInstanceResponse, status_code=201)
    def start_process(req: StartProcessRequest) -> ProcessInstanceResponse:
        started = start_onboarding(
            process_gateway,
            customer_name=req.customer_name,
            email=req.email,
            document_type=req.document_type,
        )
        return ProcessInstanceResponse(
            process_instance_id=started.instance_id,
            business_key=started.business_key,
            is_ended=False,
            message="Process instance started successfully",
        )

    @app.get("/api/process/tasks", response_model=list[ReviewTaskResponse])
    def list_tasks() -> list[ReviewTaskResponse]:
        return [_to_review_task(t) for t in process_gateway.list_review_tasks()]

    @app.post("/api/process/tasks/{task_id}/complete", response_model=ActionResponse)
    def complete_task(task_id: str, req: CompleteTaskRequest) -> ActionResponse:
        try:
            process_gateway.submit_review_decision(
                task_id, approved=req.documents_approved, comments=req.reviewer_comments
            )
        except ReviewTaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=f"Task not found: {task_id}") from e
        return ActionResponse(success=True, message="Task completed successfully", task_id=task_id)

    @app.get("/api/process/instances", response_model=list[InstanceSummary])
    def list_instances() -> list[InstanceSummary]:
        return [_to_summary(s) for s in process_gateway.list_instances()]

    @app.get("/api/process/{instance_id}/status", response_model=ProcessStatusResponse)
    def process_status(instance_id: str) -> ProcessStatusResponse:
        try:
            status = process_gateway.get_instance_state(instance_id)
        except InstanceNotFoundError as e:
            raise HTTPException(status_code=404, detail="Process instance not found") from e

        pending: list[PendingTask] = []
        if not status.ended:
            pending = [
                PendingTask(task_id=t.task_id, task_name=t.name)
                for t in process_gateway.list_review_tasks()
                if t.process_instance_id == instance_id
            ]
        return ProcessStatusResponse(
            process_instance_id=status.instance_id,
            business_key=status.business_key,
            state=status.state.value,
            active_step=status.active_step,
            is_running=not status.ended,
            is_ended=status.ended,
            end_reason=status.end_reason,
            incident=status.incident,
            variables=status.variables,
            pending_tasks=pending,
        )

    @app.delete("/api/process/{instance_id}", response_model=ActionResponse)
    def delete_process(instance_id: str) -> ActionResponse:
        try:
            process_gateway.cancel_instance(instance_id, CANCELLED_VIA_API)
        except InstanceNotFoundError as e:
            raise HTTPException(status_code=404, detail="Process instance not found") from e
        return ActionResponse(
            success=True,
            message="Process instance deleted successfully",
            process_instance_id=instance_id,
        )

    return app
