"""
sox_hub.db.models

Core persistence schema for the SOX Hub.

Responsibilities:
- Define ORM models for the compliance dataset:
  - Control: a SOX control in the matrix
  - ChangeRequest: a proposed edit or a proposed new control, routed for approval
  - VersionHistoryEntry: append-only record of each control mutation
  - User: access list entry with role set and owned controls
  - Notification: per-user inbox item
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Index, String, Text, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from sox_hub.db.base import Base


def utcnow() -> datetime:
    # Naive UTC timestamps; SQLite has no tz-aware column type.
    return datetime.now(UTC).replace(tzinfo=None)


class ControlStatus(enum.StrEnum):
    active = "active"
    inactive = "inactive"
    draft = "draft"
    pending = "pending"


class ControlType(enum.StrEnum):
    preventive = "preventive"
    detective = "detective"
    corrective = "corrective"


class ControlModality(enum.StrEnum):
    manual = "manual"
    automated = "automated"
    hybrid = "hybrid"
    itdm = "itdm"


class ChangeRequestStatus(enum.StrEnum):
    pending = "pending"
    in_review = "in_review"
    awaiting_feedback = "awaiting_feedback"
    approved = "approved"
    rejected = "rejected"
    acknowledged = "acknowledged"


OPEN_REQUEST_STATUSES = frozenset(
    {
        ChangeRequestStatus.pending,
        ChangeRequestStatus.in_review,
        ChangeRequestStatus.awaiting_feedback,
    }
)


class ChangeRequestType(enum.StrEnum):
    update = "update"
    create = "create"


class UserProfile(enum.StrEnum):
    admin = "admin"
    control_owner = "control_owner"


class Control(Base):
    __tablename__ = "controls"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    control_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    previous_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    owner: Mapped[str] = mapped_column(String(256), nullable=False, default="", index=True)
    # Free text: imported matrices carry frequencies outside the usual set ("per new supplier").
    frequency: Mapped[str] = mapped_column(String(64), nullable=False, default="ad_hoc")
    control_type: Mapped[ControlType] = mapped_column(
        Enum(ControlType), nullable=False, default=ControlType.preventive
    )
    status: Mapped[ControlStatus] = mapped_column(
        Enum(ControlStatus), nullable=False, default=ControlStatus.active, index=True
    )

    related_risks: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    test_procedures: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)

    process: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    sub_process: Mapped[str | None] = mapped_column(String(256), nullable=True)
    modality: Mapped[ControlModality | None] = mapped_column(Enum(ControlModality), nullable=True)
    responsible: Mapped[str | None] = mapped_column(String(256), nullable=True)
    n3_responsible: Mapped[str | None] = mapped_column(String(256), nullable=True)
    mrc: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ipe_applicable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Columns the list store carries that have no first-class field here.
    extra_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    sharepoint_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    last_updated: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class ChangeRequest(Base):
    __tablename__ = "change_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Null for creation proposals until approval creates the control.
    control_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("controls.id"), nullable=True, index=True
    )
    control_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    control_name: Mapped[str | None] = mapped_column(String(512), nullable=True)

    request_type: Mapped[ChangeRequestType] = mapped_column(
        Enum(ChangeRequestType), nullable=False
    )
    requested_by_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    requested_by: Mapped[str] = mapped_column(String(256), nullable=False)
    request_date: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[ChangeRequestStatus] = mapped_column(
        Enum(ChangeRequestStatus), nullable=False, default=ChangeRequestStatus.pending, index=True
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    review_date: Mapped[datetime | None] = mapped_column(nullable=True)
    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    sharepoint_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REQUEST_STATUSES

    __table_args__ = (Index("ix_change_requests_control_status", "control_id", "status"),)


class VersionHistoryEntry(Base):
    __tablename__ = "version_history"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    control_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("controls.id"), nullable=False, index=True
    )
    change_date: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)
    changed_by: Mapped[str] = mapped_column(String(256), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    previous_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    new_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    related_change_request_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("change_requests.id"), nullable=True
    )

    __table_args__ = (Index("ix_version_history_control_date", "control_id", "change_date"),)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    # Stored lower-cased; lookups lower-case their input.
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active_profile: Mapped[UserProfile] = mapped_column(
        Enum(UserProfile), nullable=False, default=UserProfile.control_owner
    )
    controls_owned: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sharepoint_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def owns(self, control_id: uuid.UUID) -> bool:
        return str(control_id) in (self.controls_owned or [])


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)


# --- Module Notes -----------------------------------------------------------
# Enum values are persisted; treat them as a stable API contract. The SharePoint
# list uses Portuguese labels for the same values (see `directory.mapping`).
