"""Configuration for the external task workers.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from camunda_onboarding.worker.tasks.retry import PollBackoff, RetryBudget
from camunda_onboarding.worker.tasks.scheduler import TopicSubscription
from camunda_onboarding.worker.topics import CREATE_ACCOUNT, HANDLE_ERROR, VALIDATE_DATA


class WorkerSettings(BaseSettings):
    """Settings for the workers and the CLI.

    Environment variables:
    - CAMUNDA_BASE_URL, CAMUNDA_WORKER_ID, CAMUNDA_PROCESS_DEFINITION_KEY
    - CAMUNDA_MAX_TASKS, CAMUNDA_LOCK_DURATION, CAMUNDA_ASYNC_RESPONSE_TIMEOUT
    - CAMUNDA_BACKOFF_INITIAL_MS, CAMUNDA_BACKOFF_FACTOR, CAMUNDA_BACKOFF_MAX_MS
    - <TOPIC>_LOCK_DURATION, <TOPIC>_MAX_RETRIES, <TOPIC>_RETRY_DELAY_MS,
      <TOPIC>_RETRY_MULTIPLIER for VALIDATE_DATA, CREATE_ACCOUNT, HANDLE_ERROR
    - LOG_LEVEL (optional)

    Notes:
        Tests can point at a different env file via
        `WorkerSettings(_env_file=path_to_env)`.
    """

    base_url: str = Field(
        default="http://localhost:8080/engine-rest",
        validation_alias="CAMUNDA_BASE_URL",
        description="Camunda engine REST API base URL",
    )
    worker_id: str = Field(
        default="external-worker-1",
        validation_alias="CAMUNDA_WORKER_ID",
        description="Worker id the engine records as lock owner",
    )
    process_definition_key: str = Field(
        default="customer_onboarding",
        validation_alias="CAMUNDA_PROCESS_DEFINITION_KEY",
    )
    max_tasks: int = Field(
        default=10,
        ge=1,
        validation_alias="CAMUNDA_MAX_TASKS",
        description="Upper bound on tasks in flight per topic",
    )
    lock_duration_ms: int = Field(
        default=30_000,
        gt=0,
        validation_alias="CAMUNDA_LOCK_DURATION",
        description="Default lock duration for topics without their own setting",
    )
    async_response_timeout_ms: int = Field(
        default=20_000,
        ge=0,
        validation_alias="CAMUNDA_ASYNC_RESPONSE_TIMEOUT",
        description="Long-polling timeout; 0 disables long polling",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="CAMUNDA_REQUEST_TIMEOUT_SECONDS",
    )

    backoff_initial_ms: int = Field(
        default=500, gt=0, validation_alias="CAMUNDA_BACKOFF_INITIAL_MS"
    )
    backoff_factor: float = Field(
        default=2.0, ge=1.0, validation_alias="CAMUNDA_BACKOFF_FACTOR"
    )
    backoff_max_ms: int = Field(
        default=60_000, gt=0, validation_alias="CAMUNDA_BACKOFF_MAX_MS"
    )

    lease_safety_margin_ms: int = Field(
        default=1_000,
        ge=0,
        validation_alias="LEASE_SAFETY_MARGIN_MS",
        description="Stop reporting this long before the engine's lock expires",
    )

    validate_data_lock_duration_ms: int | None = Field(
        default=None, gt=0, validation_alias="VALIDATE_DATA_LOCK_DURATION"
    )
    validate_data_max_retries: int = Field(
        default=3, ge=1, validation_alias="VALIDATE_DATA_MAX_RETRIES"
    )
    validate_data_retry_delay_ms: int = Field(
        default=5_000, ge=0, validation_alias="VALIDATE_DATA_RETRY_DELAY_MS"
    )
    validate_data_retry_multiplier: float = Field(
        default=1.0, ge=1.0, validation_alias="VALIDATE_DATA_RETRY_MULTIPLIER"
    )

    create_account_lock_duration_ms: int | None = Field(
        default=None, gt=0, validation_alias="CREATE_ACCOUNT_LOCK_DURATION"
    )
    create_account_max_retries: int = Field(
        default=3, ge=1, validation_alias="CREATE_ACCOUNT_MAX_RETRIES"
    )
    create_account_retry_delay_ms: int = Field(
        default=5_000, ge=0, validation_alias="CREATE_ACCOUNT_RETRY_DELAY_MS"
    )
    create_account_retry_multiplier: float = Field(
        default=2.0, ge=1.0, validation_alias="CREATE_ACCOUNT_RETRY_MULTIPLIER"
    )
    create_account_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias="CREATE_ACCOUNT_DELAY_SECONDS",
        description="Simulated backend latency of account creation",
    )

    handle_error_lock_duration_ms: int | None = Field(
        default=10_000, gt=0, validation_alias="HANDLE_ERROR_LOCK_DURATION"
    )
    handle_error_max_retries: int = Field(
        default=3, ge=1, validation_alias="HANDLE_ERROR_MAX_RETRIES"
    )
    handle_error_retry_delay_ms: int = Field(
        default=5_000, ge=0, validation_alias="HANDLE_ERROR_RETRY_DELAY_MS"
    )
    handle_error_retry_multiplier: float = Field(
        default=1.0, ge=1.0, validation_alias="HANDLE_ERROR_RETRY_MULTIPLIER"
    )

    retry_max_delay_ms: int = Field(
        default=300_000,
        ge=0,
        validation_alias="CAMUNDA_RETRY_MAX_DELAY_MS",
        description="Cap on any single retry delay",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    archive_path: Path = Field(
        default=Path("onboarding_state/instances.json"),
        validation_alias="ONBOARDING_ARCHIVE_PATH",
        description="Where the local engine archives ended instances",
    )
    archive_max_records: int = Field(
        default=1_000,
        ge=1,
        validation_alias="ONBOARDING_ARCHIVE_MAX_RECORDS",
        description="How many ended instances the archive keeps",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_engine_identity(self) -> WorkerSettings:
        if not self.base_url.strip():
            raise ValueError("CAMUNDA_BASE_URL must not be empty")
        if not self.worker_id.strip():
            raise ValueError("CAMUNDA_WORKER_ID must not be empty")
        return self

    def retry_budget(self, topic: str) -> RetryBudget:
        prefix = _TOPIC_PREFIXES[topic]
        return RetryBudget(
            max_attempts=getattr(self, f"{prefix}_max_retries"),
            base_delay_ms=getattr(self, f"{prefix}_retry_delay_ms"),
            multiplier=getattr(self, f"{prefix}_retry_multiplier"),
            max_delay_ms=self.retry_max_delay_ms,
        )

    def lock_duration_for(self, topic: str) -> int:
        value = getattr(self, f"{_TOPIC_PREFIXES[topic]}_lock_duration_ms")
        return value if value is not None else self.lock_duration_ms

    def subscriptions(self) -> list[TopicSubscription]:
        """One subscription per onboarding topic."""

        return [
            TopicSubscription(
                topic=topic,
                lock_duration_ms=self.lock_duration_for(topic),
                max_tasks=self.max_tasks,
                retry_budget=self.retry_budget(topic),
            )
            for topic in _TOPIC_PREFIXES
        ]

    def poll_backoff(self) -> PollBackoff:
        return PollBackoff(
            initial_ms=self.backoff_initial_ms,
            factor=self.backoff_factor,
            max_ms=self.backoff_max_ms,
        )


_TOPIC_PREFIXES: dict[str, str] = {
    VALIDATE_DATA: "validate_data",
    CREATE_ACCOUNT: "create_account",
    HANDLE_ERROR: "handle_error",
}
