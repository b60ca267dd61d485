"""Typed process variables as the Camunda REST API exchanges them.

`{"name": {"value": ..., "type": "String"}}` on the wire, plain Python values
inside the worker.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def format_engine_date(value: datetime) -> str:
    """`yyyy-MM-ddTHH:mm:ss.SSS+hhmm`; naive datetimes are taken as UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    millis = f"{value.microsecond // 1000:03d}"
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + millis + value.strftime("%z")


def parse_engine_date(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return None


def to_typed_value(value: object) -> dict[str, object]:
    # bool before int: bool is an int subclass.
    if value is None:
        return {"value": None, "type": "Null"}
    if isinstance(value, bool):
        return {"value": value, "type": "Boolean"}
    if isinstance(value, int):
        kind = "Integer" if _INT32_MIN <= value <= _INT32_MAX else "Long"
        return {"value": value, "type": kind}
    if isinstance(value, float):
        return {"value": value, "type": "Double"}
    if isinstance(value, datetime):
        return {"value": format_engine_date(value), "type": "Date"}
    if isinstance(value, (dict, list)):
        return {"value": json.dumps(value, ensure_ascii=False), "type": "Json"}
    return {"value": str(value), "type": "String"}


def to_typed_variables(variables: Mapping[str, object]) -> dict[str, dict[str, object]]:
    return {name: to_typed_value(value) for name, value in variables.items()}


def from_typed_value(typed: Mapping[str, object]) -> object:
    value = typed.get("value")
    kind = str(typed.get("type") or "").lower()
    if kind == "json" and isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def from_typed_variables(raw: object) -> dict[str, object]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, object] = {}
    for name, typed in raw.items():
        if isinstance(typed, Mapping):
            out[str(name)] = from_typed_value(typed)
    return out
