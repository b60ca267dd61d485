"""Persisted record of ended onboarding instances.

Written by the local engine when an instance reaches a terminal state or is
cancelled, so `status` keeps answering for it after a restart. The file holds
one JSON object keyed by instance id, oldest first; once `max_records` is
exceeded the oldest entries are dropped.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from camunda_onboarding.worker.workflow.state_machine import OnboardingState

logger = logging.getLogger(__name__)


class ArchivedInstance(BaseModel):
    instance_id: str
    business_key: str | None = None
    state: OnboardingState
    history: list[OnboardingState] = Field(default_factory=list)
    variables: dict[str, object] = Field(default_factory=dict)
    end_reason: str | None = None
    incident: str | None = None
    ended_at: datetime


@dataclass
class InstanceArchive:
    path: Path
    max_records: int | None = None

    def __post_init__(self) -> None:
        if self.max_records is not None and self.max_records <= 0:
            raise ValueError("max_records must be > 0")
        self._lock = threading.Lock()

    def get(self, instance_id: str) -> ArchivedInstance | None:
        with self._lock:
            return self._read_unlocked().get(instance_id)

    def list(
        self, *, state: OnboardingState | None = None, limit: int | None = None
    ) -> list[ArchivedInstance]:
        """Most recently ended first, optionally only those that ended in `state`."""

        with self._lock:
            records = list(reversed(self._read_unlocked().values()))
        if state is not None:
            records = [r for r in records if r.state == state]
        return records if limit is None else records[:limit]

    def add(self, record: ArchivedInstance) -> None:
        """Insert `record`, replacing and re-dating any earlier record for the same instance."""

        with self._lock:
            records = self._read_unlocked()
            records.pop(record.instance_id, None)
            records[record.instance_id] = record
            if self.max_records is not None:
                for instance_id in list(records)[: max(len(records) - self.max_records, 0)]:
                    del records[instance_id]
            self._write_unlocked(records)

    def _read_unlocked(self) -> dict[str, ArchivedInstance]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
            return {key: ArchivedInstance.model_validate(value) for key, value in raw.items()}
        except (ValueError, ValidationError) as e:
            logger.warning(
                "Ignoring unreadable instance archive",
                extra={"path": str(self.path), "error": str(e)},
            )
            return {}

    def _write_unlocked(self, records: dict[str, ArchivedInstance]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {key: record.model_dump(mode="json") for key, record in records.items()}
        # Readers never see a half-written file.
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        os.replace(tmp, self.path)
