"""
sox_hub.services.change_requests

Change request workflow service (transaction + persistence owner).

Responsibilities:
- Accept update proposals for existing controls and creation proposals for new ones.
- Drive the review state machine:
    pending / in_review / awaiting_feedback  (open)
    approved / rejected / acknowledged       (terminal)
- Apply approved changes through the control registry with linked history rows.
- Notify requesters and mirror requests onto the SharePoint history list when configured.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.auth.models import ROLE_ADMIN, Principal
from sox_hub.db.models import (
    OPEN_REQUEST_STATUSES,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeRequestType,
    User,
    UserProfile,
    utcnow,
)
from sox_hub.db.repositories.change_requests import ChangeRequestRepo
from sox_hub.db.repositories.controls import ControlRepo
from sox_hub.db.repositories.users import UserRepo
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import (
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from sox_hub.observability.logging import get_logger
from sox_hub.services.control_registry import ControlRegistry
from sox_hub.services.fields import (
    CREATION_FIELDS,
    EDITABLE_FIELDS,
    normalize_changes,
    to_jsonable,
)
from sox_hub.services.notifications import NotificationService

log = get_logger(__name__)

MIN_PROPOSED_NAME = 10
MIN_REASON = 20


@dataclass(frozen=True, slots=True)
class FieldDiff:
    field: str
    old_value: Any
    new_value: Any


def _user_id(principal: Principal) -> uuid.UUID | None:
    try:
        return uuid.UUID(principal.subject)
    except ValueError:
        return None


class ChangeRequestService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        lists: SharePointLists | None = None,
    ) -> None:
        self._session = session
        self._lists = lists

        self._requests = ChangeRequestRepo(session)
        self._controls = ControlRepo(session)
        self._users = UserRepo(session)
        self._registry = ControlRegistry(session=session)
        self._notifications = NotificationService(session=session)

    # --- submission ----------------------------------------------------------

    async def submit_update(
        self,
        *,
        control_id: uuid.UUID,
        changes: Mapping[str, Any],
        comments: str | None,
        requester: Principal,
    ) -> ChangeRequest:
        control = await self._controls.get(control_id)
        if control is None:
            raise NotFoundError(f"Control {control_id} not found")

        if not requester.is_admin:
            uid = _user_id(requester)
            user = await self._users.get(uid) if uid else None
            if user is None or not user.owns(control.id):
                raise PermissionDeniedError("Only the control owner or an admin can request changes")

        values = normalize_changes(changes)
        if await self._requests.open_for_control(control.id) is not None:
            raise ConflictError(f"Control {control.control_code} already has an open change request")

        cr = await self._requests.create(
            request_type=ChangeRequestType.update,
            requested_by=requester.name,
            requested_by_id=_user_id(requester),
            changes=values,
            comments=comments,
            control_id=control.id,
            control_code=control.control_code,
            control_name=control.name,
        )
        await self._mirror_new(cr)
        await self._session.commit()
        log.info("change_request_submitted", change_request_id=str(cr.id), control_code=control.control_code)
        return cr

    async def submit_creation(
        self,
        *,
        proposed_name: str,
        reason: str,
        requester: Principal,
        fields: Mapping[str, Any] | None = None,
    ) -> ChangeRequest:
        if not (requester.is_control_owner or requester.is_admin):
            raise PermissionDeniedError("Only control owners can propose new controls")
        name = (proposed_name or "").strip()
        why = (reason or "").strip()
        if len(name) < MIN_PROPOSED_NAME:
            raise InvalidRequestError(f"Proposed name must have at least {MIN_PROPOSED_NAME} characters")
        if len(why) < MIN_REASON:
            raise InvalidRequestError(f"Reason must have at least {MIN_REASON} characters")

        values = normalize_changes({**dict(fields or {}), "name": name}, allowed=CREATION_FIELDS)
        cr = await self._requests.create(
            request_type=ChangeRequestType.create,
            requested_by=requester.name,
            requested_by_id=_user_id(requester),
            changes=values,
            comments=f"Proposed name: {name}. Reason: {why}",
            control_code=values.get("control_code"),
            control_name=name,
        )
        await self._mirror_new(cr)
        await self._session.commit()
        log.info("control_creation_requested", change_request_id=str(cr.id))
        return cr

    async def revise(
        self,
        *,
        request_id: uuid.UUID,
        changes: Mapping[str, Any] | None,
        comments: str | None,
        requester: Principal,
    ) -> ChangeRequest:
        cr = await self._requests.get_for_update(request_id)
        if cr is None:
            raise NotFoundError(f"Change request {request_id} not found")
        if cr.requested_by_id is None or cr.requested_by_id != _user_id(requester):
            raise PermissionDeniedError("Only the original requester can revise a request")
        if cr.status != ChangeRequestStatus.awaiting_feedback:
            raise InvalidTransitionError("Only requests awaiting feedback can be revised")

        if changes:
            allowed = CREATION_FIELDS if cr.request_type == ChangeRequestType.create else EDITABLE_FIELDS
            revised = normalize_changes(changes, allowed=allowed)
            cr.changes = {**cr.changes, **revised}
            if cr.request_type == ChangeRequestType.create:
                cr.control_code = cr.changes.get("control_code")
                cr.control_name = cr.changes.get("name") or cr.control_name
        if comments:
            cr.comments = comments
        cr.status = ChangeRequestStatus.pending
        await self._session.flush()
        await self._mirror_status(cr)
        await self._session.commit()
        log.info("change_request_revised", change_request_id=str(cr.id))
        return cr

    # --- reads ---------------------------------------------------------------

    async def get_request(self, request_id: uuid.UUID) -> ChangeRequest:
        cr = await self._requests.get(request_id)
        if cr is None:
            raise NotFoundError(f"Change request {request_id} not found")
        return cr

    async def list_requests(
        self, *, statuses: Iterable[ChangeRequestStatus] | None = None
    ) -> list[ChangeRequest]:
        return await self._requests.list(statuses=statuses)

    async def list_pending(self, viewer: User) -> list[ChangeRequest]:
        # Admins acting as admins see the whole queue; everyone else sees their own.
        if viewer.active_profile == UserProfile.admin and ROLE_ADMIN in (viewer.roles or []):
            return await self._requests.list(statuses=OPEN_REQUEST_STATUSES)
        return await self._requests.list(statuses=OPEN_REQUEST_STATUSES, requested_by_id=viewer.id)

    async def diff(self, request_id: uuid.UUID) -> list[FieldDiff]:
        cr = await self.get_request(request_id)
        if cr.request_type == ChangeRequestType.create:
            return [FieldDiff(field=k, old_value=None, new_value=v) for k, v in cr.changes.items()]

        control = await self._controls.get(cr.control_id) if cr.control_id else None
        out: list[FieldDiff] = []
        for k, new in cr.changes.items():
            old = to_jsonable(getattr(control, k, None)) if control is not None else None
            if str(old) != str(new):
                out.append(FieldDiff(field=k, old_value=old, new_value=new))
        return out

    # --- review --------------------------------------------------------------

    async def _open_for_review(self, request_id: uuid.UUID, reviewer: Principal) -> ChangeRequest:
        if not reviewer.is_admin:
            raise PermissionDeniedError("Only admins can review change requests")
        cr = await self._requests.get_for_update(request_id)
        if cr is None:
            raise NotFoundError(f"Change request {request_id} not found")
        if not cr.is_open:
            raise InvalidTransitionError(f"Change request is already {cr.status.value}")
        return cr

    async def _finish(
        self,
        cr: ChangeRequest,
        *,
        status: ChangeRequestStatus,
        reviewer: Principal,
        feedback: str | None,
        message: str,
    ) -> ChangeRequest:
        cr.status = status
        cr.reviewed_by = reviewer.name
        cr.review_date = utcnow()
        if feedback is not None:
            cr.admin_feedback = feedback
        await self._session.flush()

        if cr.requested_by_id is not None and await self._users.get(cr.requested_by_id) is not None:
            await self._notifications.notify(user_id=cr.requested_by_id, message=message)
        await self._mirror_status(cr)
        await self._session.commit()
        log.info(
            "change_request_reviewed",
            change_request_id=str(cr.id),
            status=status.value,
            reviewer=reviewer.name,
        )
        return cr

    @staticmethod
    def _label(cr: ChangeRequest) -> str:
        return cr.control_code or cr.control_name or str(cr.id)

    async def start_review(self, *, request_id: uuid.UUID, reviewer: Principal) -> ChangeRequest:
        cr = await self._open_for_review(request_id, reviewer)
        if cr.status == ChangeRequestStatus.in_review:
            raise InvalidTransitionError("Change request is already in review")
        return await self._finish(
            cr,
            status=ChangeRequestStatus.in_review,
            reviewer=reviewer,
            feedback=None,
            message=f"Your change request for {self._label(cr)} is now in review.",
        )

    async def approve(
        self, *, request_id: uuid.UUID, reviewer: Principal, feedback: str | None = None
    ) -> ChangeRequest:
        cr = await self._open_for_review(request_id, reviewer)

        if cr.request_type == ChangeRequestType.update:
            control = await self._controls.get_for_update(cr.control_id) if cr.control_id else None
            if control is None:
                # Nothing is committed; the request stays open for a later decision.
                await self._session.rollback()
                raise NotFoundError(f"Control {cr.control_code} no longer exists; request left open")
            await self._registry.change_control(
                control,
                cr.changes,
                actor=reviewer.name,
                summary=f"Change request {cr.id} approved",
                related_change_request_id=cr.id,
            )
            if self._lists is not None and control.sharepoint_item_id:
                # Push first: a failure here rolls back the local approval too.
                await self._lists.update_control_fields(control.sharepoint_item_id, cr.changes)
        else:
            code = cr.changes.get("control_code") or f"CTRL-{await self._controls.count() + 1:03d}"
            control = await self._registry.add_control(
                {**cr.changes, "control_code": code, "status": "active"},
                actor=reviewer.name,
                summary=f"Control {code} created via request {cr.id}",
                related_change_request_id=cr.id,
            )
            cr.control_id = control.id
            cr.control_code = code

        return await self._finish(
            cr,
            status=ChangeRequestStatus.approved,
            reviewer=reviewer,
            feedback=feedback,
            message=f"Your change request for {self._label(cr)} was approved.",
        )

    async def reject(self, *, request_id: uuid.UUID, reviewer: Principal, feedback: str) -> ChangeRequest:
        comment = (feedback or "").strip()
        if not comment:
            raise InvalidRequestError("A comment is required to reject a request")
        cr = await self._open_for_review(request_id, reviewer)
        return await self._finish(
            cr,
            status=ChangeRequestStatus.rejected,
            reviewer=reviewer,
            feedback=comment,
            message=f"Your change request for {self._label(cr)} was rejected: {comment}",
        )

    async def request_changes(
        self, *, request_id: uuid.UUID, reviewer: Principal, feedback: str
    ) -> ChangeRequest:
        comment = (feedback or "").strip()
        if not comment:
            raise InvalidRequestError("A comment is required to request changes")
        cr = await self._open_for_review(request_id, reviewer)
        return await self._finish(
            cr,
            status=ChangeRequestStatus.awaiting_feedback,
            reviewer=reviewer,
            feedback=comment,
            message=f"Feedback requested on your change request for {self._label(cr)}: {comment}",
        )

    async def acknowledge(
        self, *, request_id: uuid.UUID, reviewer: Principal, feedback: str | None = None
    ) -> ChangeRequest:
        cr = await self._open_for_review(request_id, reviewer)
        if cr.request_type != ChangeRequestType.create:
            raise InvalidTransitionError("Only creation requests can be acknowledged")
        if not cr.control_name:
            raise InvalidRequestError("The creation request has no proposed control name")
        return await self._finish(
            cr,
            status=ChangeRequestStatus.acknowledged,
            reviewer=reviewer,
            feedback=feedback,
            message=f"Your proposal '{cr.control_name}' was acknowledged.",
        )

    # --- directory mirror ----------------------------------------------------

    async def _mirror_new(self, cr: ChangeRequest) -> None:
        if self._lists is None:
            return
        cr.sharepoint_item_id = await self._lists.add_change_request(cr)
        await self._session.flush()

    async def _mirror_status(self, cr: ChangeRequest) -> None:
        if self._lists is None or not cr.sharepoint_item_id:
            return
        await self._lists.update_change_request_status(cr)


# --- Module Notes -----------------------------------------------------------
# Directory writes happen before the local commit. When Graph rejects a write the
# exception propagates, the session is discarded uncommitted, and the caller sees 502.
