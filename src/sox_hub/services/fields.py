"""
sox_hub.services.fields

Control field vocabulary shared by direct edits and change requests.

Responsibilities:
- Define which control fields callers may change.
- Normalize proposed values into JSON-safe form (what change requests persist).
- Snapshot current values for history rows and diffs.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sox_hub.db.models import Control
from sox_hub.directory.mapping import coerce_field
from sox_hub.errors import InvalidRequestError

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "previous_description",
        "owner",
        "frequency",
        "control_type",
        "status",
        "related_risks",
        "test_procedures",
        "evidence_requirements",
        "justification",
        "process",
        "sub_process",
        "modality",
        "responsible",
        "n3_responsible",
        "mrc",
        "ipe_applicable",
        "extra_fields",
    }
)
# The code is fixed once a control exists; only new controls choose one.
CREATION_FIELDS = EDITABLE_FIELDS | {"control_code"}

_REQUIRED_TEXT = frozenset({"name", "control_code"})


def to_jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list | tuple):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value


def coerce_value(field: str, value: Any) -> Any:
    """Typed value for assignment onto a `Control` attribute."""

    if field == "extra_fields":
        if not isinstance(value, Mapping):
            raise InvalidRequestError("extra_fields must be an object")
        return dict(value)
    coerced = coerce_field(field, value)
    if field in _REQUIRED_TEXT and not coerced:
        raise InvalidRequestError(f"{field} must not be empty")
    if field in ("description", "owner", "frequency") and coerced is None:
        return ""
    return coerced


def normalize_changes(
    changes: Mapping[str, Any], *, allowed: frozenset[str] = EDITABLE_FIELDS
) -> dict[str, Any]:
    if not changes:
        raise InvalidRequestError("No changes were proposed")
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise InvalidRequestError(f"Unknown or non-editable fields: {', '.join(unknown)}")
    return {k: to_jsonable(coerce_value(k, v)) for k, v in changes.items()}


def snapshot(control: Control, keys: Iterable[str]) -> dict[str, Any]:
    return {k: to_jsonable(getattr(control, k, None)) for k in keys}


def apply_changes(control: Control, changes: Mapping[str, Any]) -> None:
    for k, v in changes.items():
        if k == "extra_fields":
            # Merge so one dynamic column can change without resending the rest.
            control.extra_fields = {**(control.extra_fields or {}), **dict(v or {})}
        else:
            setattr(control, k, coerce_value(k, v))
