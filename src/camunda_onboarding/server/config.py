"""Configuration for the REST server."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API.

    Notes:
        With `ONBOARDING_ENGINE=local` the server hosts an in-process engine and
        runs the workers itself; with `camunda` it forwards to the engine REST API.
    """

    engine: Literal["camunda", "local"] = Field(
        default="camunda",
        validation_alias="ONBOARDING_ENGINE",
        description="Which process gateway the API talks to",
    )
    camunda_base_url: str = Field(
        default="http://localhost:8080/engine-rest", validation_alias="CAMUNDA_BASE_URL"
    )
    process_definition_key: str = Field(
        default="customer_onboarding", validation_alias="CAMUNDA_PROCESS_DEFINITION_KEY"
    )
    archive_path: Path = Field(
        default=Path("onboarding_state/instances.json"),
        validation_alias="ONBOARDING_ARCHIVE_PATH",
    )
    archive_max_records: int = Field(
        default=1_000, ge=1, validation_alias="ONBOARDING_ARCHIVE_MAX_RECORDS"
    )

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="ONBOARDING_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
