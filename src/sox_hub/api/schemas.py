"""
sox_hub.api.schemas

Response models shared across routers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sox_hub.db.models import (
    ChangeRequestStatus,
    ChangeRequestType,
    ControlModality,
    ControlStatus,
    ControlType,
    UserProfile,
)


class _FromOrm(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ControlResponse(_FromOrm):
    id: uuid.UUID
    control_code: str
    name: str
    description: str
    previous_description: str | None
    owner: str
    frequency: str
    control_type: ControlType
    status: ControlStatus
    related_risks: list[str]
    test_procedures: str | None
    evidence_requirements: str | None
    justification: str | None
    process: str | None
    sub_process: str | None
    modality: ControlModality | None
    responsible: str | None
    n3_responsible: str | None
    mrc: bool
    ipe_applicable: bool
    extra_fields: dict[str, Any]
    sharepoint_item_id: str | None
    last_updated: datetime


class ChangeRequestResponse(_FromOrm):
    id: uuid.UUID
    control_id: uuid.UUID | None
    control_code: str | None
    control_name: str | None
    request_type: ChangeRequestType
    requested_by: str
    requested_by_id: uuid.UUID | None
    request_date: datetime
    changes: dict[str, Any]
    status: ChangeRequestStatus
    comments: str | None
    reviewed_by: str | None
    review_date: datetime | None
    admin_feedback: str | None


class HistoryEntryResponse(_FromOrm):
    id: uuid.UUID
    control_id: uuid.UUID
    change_date: datetime
    changed_by: str
    summary: str
    previous_values: dict[str, Any]
    new_values: dict[str, Any]
    related_change_request_id: uuid.UUID | None


class UserResponse(_FromOrm):
    id: uuid.UUID
    name: str
    email: str
    roles: list[str]
    active_profile: UserProfile
    controls_owned: list[str] = Field(default_factory=list)


class NotificationResponse(_FromOrm):
    id: uuid.UUID
    message: str
    read: bool
    created_at: datetime
