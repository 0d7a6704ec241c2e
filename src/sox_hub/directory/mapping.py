"""
sox_hub.directory.mapping

Translation between SharePoint list columns and registry fields.

Responsibilities:
- Hold the display-name headers of the controls list (also the bulk import template).
- Parse the loosely-typed values SharePoint returns (booleans, lookups, labels).
- Classify list columns into the small set of types the hub understands.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sox_hub.db.models import (
    ChangeRequestStatus,
    ChangeRequestType,
    ControlModality,
    ControlStatus,
    ControlType,
)
from sox_hub.errors import InvalidRequestError

# Registry field -> controls list display name. Order is the import template order.
CONTROL_FIELD_HEADERS: dict[str, str] = {
    "control_code": "Código NOVO",
    "name": "Nome do Controle",
    "description": "Descrição do controle ATUAL",
    "previous_description": "Descrição do controle ANTERIOR",
    "owner": "Dono do Controle (Control owner)",
    "frequency": "Frequência",
    "control_type": "P/D",
    "status": "Status",
    "process": "Processo",
    "sub_process": "Sub-Processo",
    "modality": "Modalidade",
    "responsible": "Responsável",
    "n3_responsible": "N3 Responsável",
    "related_risks": "Riscos Relacionados",
    "test_procedures": "Procedimentos de Teste",
    "evidence_requirements": "Evidência do controle",
    "justification": "Justificativa",
    "mrc": "MRC?",
    "ipe_applicable": "Aplicável IPE?",
}
HEADER_TO_FIELD: dict[str, str] = {v: k for k, v in CONTROL_FIELD_HEADERS.items()}

BOOLEAN_FIELDS = frozenset({"mrc", "ipe_applicable"})

# Columns every SharePoint list carries that are never control data.
SYSTEM_COLUMNS = frozenset(
    {
        "Title",
        "ContentType",
        "Attachments",
        "Edit",
        "DocIcon",
        "LinkTitleNoMenu",
        "LinkTitle",
        "ItemChildCount",
        "FolderChildCount",
        "_UIVersionString",
        "_ComplianceTag",
        "_ComplianceTagWrittenTime",
        "_ComplianceTagUserId",
    }
)

CONTROL_STATUS_LABELS: dict[ControlStatus, str] = {
    ControlStatus.active: "Ativo",
    ControlStatus.inactive: "Inativo",
    ControlStatus.draft: "Rascunho",
    ControlStatus.pending: "Pendente Aprovação",
}
CONTROL_TYPE_LABELS: dict[ControlType, str] = {
    ControlType.preventive: "Preventivo",
    ControlType.detective: "Detectivo",
    ControlType.corrective: "Corretivo",
}
MODALITY_LABELS: dict[ControlModality, str] = {
    ControlModality.manual: "Manual",
    ControlModality.automated: "Automático",
    ControlModality.hybrid: "Híbrido",
    ControlModality.itdm: "ITDM",
}
REQUEST_STATUS_LABELS: dict[ChangeRequestStatus, str] = {
    ChangeRequestStatus.pending: "Pendente",
    ChangeRequestStatus.in_review: "Em Análise",
    ChangeRequestStatus.awaiting_feedback: "Aguardando Feedback do Dono",
    ChangeRequestStatus.approved: "Aprovado",
    ChangeRequestStatus.rejected: "Rejeitado",
    ChangeRequestStatus.acknowledged: "Ciente",
}
REQUEST_TYPE_LABELS: dict[ChangeRequestType, str] = {
    ChangeRequestType.update: "Alteração",
    ChangeRequestType.create: "Criação",
}

_TRUE_STRINGS = frozenset({"true", "sim", "yes", "1", "x", "s"})


def parse_sharepoint_boolean(value: Any) -> bool:
    """
    Interpret a SharePoint cell as a boolean.

    Yes/No columns come back as real booleans; text columns used as flags carry
    "Sim", "x", "1" and similar.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, int | float):
        return value == 1
    return False


def unwrap_lookup(value: Any) -> Any:
    # Lookup and person columns return objects (or lists of them); keep the display text.
    if isinstance(value, list):
        return [unwrap_lookup(v) if isinstance(v, dict) else str(v) for v in value]
    if isinstance(value, dict):
        for key in ("lookupValue", "DisplayName", "Title"):
            if key in value:
                return value[key]
    return value


def _label_lookup(labels: Mapping[Any, str], enum_cls: type, value: Any) -> Any:
    if value is None or value == "":
        return None
    text = str(value).strip()
    for member, label in labels.items():
        if text.lower() in (label.lower(), member.value):
            return member
    try:
        return enum_cls(text)
    except ValueError as e:
        raise InvalidRequestError(f"Unrecognized value '{text}'") from e


def parse_control_status(value: Any) -> ControlStatus:
    return _label_lookup(CONTROL_STATUS_LABELS, ControlStatus, value) or ControlStatus.active


def parse_control_type(value: Any) -> ControlType | None:
    # The matrix "P/D" column often holds just the initial.
    if isinstance(value, str) and value.strip().upper() in ("P", "D", "C"):
        return {
            "P": ControlType.preventive,
            "D": ControlType.detective,
            "C": ControlType.corrective,
        }[value.strip().upper()]
    return _label_lookup(CONTROL_TYPE_LABELS, ControlType, value)


def parse_modality(value: Any) -> ControlModality | None:
    return _label_lookup(MODALITY_LABELS, ControlModality, value)


def parse_request_status(value: Any) -> ChangeRequestStatus:
    return _label_lookup(REQUEST_STATUS_LABELS, ChangeRequestStatus, value) or ChangeRequestStatus.pending


def parse_request_type(value: Any) -> ChangeRequestType:
    return _label_lookup(REQUEST_TYPE_LABELS, ChangeRequestType, value) or ChangeRequestType.update


def _parse_risks(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in re.split(r"[;,\n]", str(value)) if part.strip()]


def coerce_field(field: str, value: Any) -> Any:
    """Convert a raw list/spreadsheet value into the registry's type for `field`."""

    value = unwrap_lookup(value)
    if field in BOOLEAN_FIELDS:
        return parse_sharepoint_boolean(value)
    if field == "status":
        return parse_control_status(value)
    if field == "control_type":
        return parse_control_type(value) or ControlType.preventive
    if field == "modality":
        return parse_modality(value)
    if field == "related_risks":
        return _parse_risks(value)
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value).strip()


def extra_field_key(header: str) -> str:
    """Key an unmapped column is stored under in `extra_fields`."""

    return re.sub(r"\s+", "", header)


def fields_from_headers(values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Map a display-name keyed row onto registry fields.

    Known headers become first-class fields; everything else lands in `extra_fields`
    under the header with whitespace removed.
    """

    fields: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for header, raw in values.items():
        if raw is None or raw == "":
            continue
        field = HEADER_TO_FIELD.get(header)
        if field is None:
            extra[extra_field_key(header)] = unwrap_lookup(raw)
            continue
        fields[field] = coerce_field(field, raw)
    if extra:
        fields["extra_fields"] = extra
    return fields


def to_sharepoint_value(field: str, value: Any) -> Any:
    """Render a registry value the way the controls list stores it."""

    if value is None:
        return None
    if field == "status":
        return CONTROL_STATUS_LABELS[ControlStatus(value)]
    if field == "control_type":
        return CONTROL_TYPE_LABELS[ControlType(value)]
    if field == "modality":
        return MODALITY_LABELS[ControlModality(value)]
    if field in BOOLEAN_FIELDS:
        return bool(value)
    if field == "related_risks":
        return "; ".join(value)
    return value


@dataclass(frozen=True, slots=True)
class SharePointColumn:
    display_name: str
    internal_name: str
    type: str


def classify_column(column: Mapping[str, Any]) -> str:
    """Reduce a Graph columnDefinition to a hub column type."""

    if "boolean" in column:
        return "boolean"
    if "dateTime" in column:
        return "dateTime"
    if "number" in column:
        return "number"
    if "choice" in column:
        return "multiChoice" if (column.get("choice") or {}).get("allowMultipleValues") else "choice"
    if "text" in column:
        return "note" if (column.get("text") or {}).get("allowMultipleLines") else "text"
    if "lookup" in column or "personOrGroup" in column:
        return "text"
    return "unsupported"


def column_internal_name(display_name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "", display_name)


def item_to_control_fields(
    item: Mapping[str, Any], columns: list[SharePointColumn]
) -> dict[str, Any]:
    """Map a controls list item (with expanded `fields`) onto registry fields."""

    sp_fields: Mapping[str, Any] = item.get("fields") or {}
    by_display = {
        c.display_name: sp_fields[c.internal_name]
        for c in columns
        if sp_fields.get(c.internal_name) is not None
    }
    fields = fields_from_headers(by_display)
    # A list item with no status column value is an active control.
    fields["status"] = parse_control_status(sp_fields.get("Status"))
    fields["sharepoint_item_id"] = str(item.get("id")) if item.get("id") is not None else None
    return fields


# --- Module Notes -----------------------------------------------------------
# Labels are Portuguese because the list store belongs to a Brazilian finance team;
# the registry persists the enum values and converts only at this boundary.
