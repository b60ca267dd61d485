from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from camunda_onboarding.worker.workflow.archive import ArchivedInstance, InstanceArchive
from camunda_onboarding.worker.workflow.state_machine import OnboardingState

ENDED_AT = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def _record(
    instance_id: str, state: OnboardingState = OnboardingState.COMPLETED, minute: int = 0
) -> ArchivedInstance:
    return ArchivedInstance(
        instance_id=instance_id,
        business_key="CUST-1",
        state=state,
        history=[OnboardingState.STARTED, state],
        variables={"accountId": "ACC-1"},
        ended_at=ENDED_AT + timedelta(minutes=minute),
    )


def test_missing_file_is_empty(tmp_path: Path) -> None:
    archive = InstanceArchive(tmp_path / "nested" / "instances.json")

    assert archive.list() == []
    assert archive.get("pi-1") is None


def test_add_persists_keyed_by_instance(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "instances.json"
    archive = InstanceArchive(path)

    archive.add(_record("pi-1"))
    archive.add(_record("pi-2", minute=1))
    archive.add(_record("pi-1", OnboardingState.REJECTED, minute=2))

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert list(raw) == ["pi-2", "pi-1"]
    assert raw["pi-1"]["state"] == "REJECTED"
    assert not path.with_suffix(".json.tmp").exists()

    reloaded = InstanceArchive(path)
    record = reloaded.get("pi-1")
    assert record is not None
    assert record.state == OnboardingState.REJECTED
    assert record.ended_at == ENDED_AT + timedelta(minutes=2)
    assert record.variables == {"accountId": "ACC-1"}


def test_list_is_newest_first_and_filters_by_state(tmp_path: Path) -> None:
    archive = InstanceArchive(tmp_path / "instances.json")
    archive.add(_record("pi-1"))
    archive.add(_record("pi-2", OnboardingState.FAILED, minute=1))
    archive.add(_record("pi-3", minute=2))

    assert [r.instance_id for r in archive.list()] == ["pi-3", "pi-2", "pi-1"]
    completed = archive.list(state=OnboardingState.COMPLETED)
    assert [r.instance_id for r in completed] == ["pi-3", "pi-1"]
    assert [r.instance_id for r in archive.list(limit=1)] == ["pi-3"]


def test_oldest_records_are_dropped_beyond_max_records(tmp_path: Path) -> None:
    archive = InstanceArchive(tmp_path / "instances.json", max_records=2)

    for minute, instance_id in enumerate(["pi-1", "pi-2", "pi-3"]):
        archive.add(_record(instance_id, minute=minute))

    assert archive.get("pi-1") is None
    assert [r.instance_id for r in archive.list()] == ["pi-3", "pi-2"]


def test_max_records_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="max_records"):
        InstanceArchive(tmp_path / "instances.json", max_records=0)


@pytest.mark.parametrize("content", ["{not json", "[]", '{"pi-1": {"state": "NOPE"}}'])
def test_unreadable_file_reads_as_empty(tmp_path: Path, content: str) -> None:
    path = tmp_path / "instances.json"
    path.write_text(content, encoding="utf-8")

    assert InstanceArchive(path).list() == []
