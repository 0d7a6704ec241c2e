"""
sox_hub.db.seed

Demo dataset for dev/test environments.

Responsibilities:
- Insert a small, coherent matrix (controls, users, open requests, history) once.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sox_hub.auth.models import ROLE_ADMIN, ROLE_CONTROL_OWNER
from sox_hub.db.models import (
    ChangeRequest,
    ChangeRequestStatus,
    ChangeRequestType,
    Control,
    ControlModality,
    ControlStatus,
    ControlType,
    User,
    UserProfile,
    VersionHistoryEntry,
    utcnow,
)
from sox_hub.observability.logging import get_logger

log = get_logger(__name__)


async def seed_demo_data(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Returns False when the database already holds users."""

    async with session_factory() as session:
        if (await session.execute(select(func.count()).select_from(User))).scalar_one():
            return False

        now = utcnow()
        fin = Control(
            control_code="FIN-001",
            name="Bank Reconciliation Review",
            description=(
                "Monthly review and approval of bank reconciliations by the finance manager so "
                "that every transaction is recorded and discrepancies are resolved on time."
            ),
            owner="Alice Wonderland",
            frequency="monthly",
            control_type=ControlType.detective,
            status=ControlStatus.active,
            related_risks=["Misstated financial statements", "Fraudulent transactions"],
            test_procedures="Sample completed reconciliations and check preparer and reviewer sign-off.",
            evidence_requirements="Signed reconciliation report and support for reconciling items.",
            process="Financial Reporting",
            sub_process="Month-end Close",
            modality=ControlModality.manual,
            mrc=True,
            last_updated=now - timedelta(days=5),
        )
        itg = Control(
            control_code="ITG-005",
            name="System Access Approval",
            description="Quarterly review of user access rights to critical systems.",
            owner="Bob The Builder",
            frequency="on_request",
            control_type=ControlType.preventive,
            status=ControlStatus.active,
            related_risks=["Unauthorized access", "Data breach"],
            process="User Access Management",
            sub_process="User Provisioning",
            modality=ControlModality.automated,
        )
        pro = Control(
            control_code="PRO-012",
            name="Supplier Integrity Due Diligence",
            description="Integrity checks performed on every new supplier before onboarding.",
            owner="Charlie Brown",
            frequency="per_new_supplier",
            control_type=ControlType.preventive,
            status=ControlStatus.pending,
            process="Procurement",
            sub_process="Supplier Management",
            modality=ControlModality.manual,
        )
        session.add_all([fin, itg, pro])
        await session.flush()

        admin = User(
            name="Admin User",
            email="admin@example.com",
            roles=[ROLE_ADMIN, ROLE_CONTROL_OWNER],
            active_profile=UserProfile.admin,
        )
        owner = User(
            name="Owner User",
            email="owner@example.com",
            roles=[ROLE_CONTROL_OWNER],
            active_profile=UserProfile.control_owner,
            controls_owned=[str(fin.id), str(itg.id)],
        )
        session.add_all([admin, owner])
        await session.flush()

        session.add_all(
            [
                ChangeRequest(
                    control_id=fin.id,
                    control_code=fin.control_code,
                    control_name=fin.name,
                    request_type=ChangeRequestType.update,
                    requested_by=owner.name,
                    requested_by_id=owner.id,
                    request_date=now - timedelta(days=1),
                    changes={"frequency": "daily"},
                    status=ChangeRequestStatus.pending,
                    comments="Policy now requires a daily review focused on high-value transactions.",
                ),
                ChangeRequest(
                    control_code="OPS-010",
                    control_name="Production Monitoring Operational Control",
                    request_type=ChangeRequestType.create,
                    requested_by=owner.name,
                    requested_by_id=owner.id,
                    request_date=now,
                    changes={
                        "control_code": "OPS-010",
                        "name": "Production Monitoring Operational Control",
                        "owner": "Operations Team",
                        "frequency": "daily",
                        "control_type": "preventive",
                        "process": "Daily Operations",
                        "sub_process": "Production Monitoring",
                        "modality": "hybrid",
                    },
                    status=ChangeRequestStatus.pending,
                    comments="Proposed name: Production Monitoring Operational Control. "
                    "Reason: production incidents are not reviewed by anyone today.",
                ),
                VersionHistoryEntry(
                    control_id=fin.id,
                    change_date=now - timedelta(days=10),
                    changed_by=admin.name,
                    summary="Control FIN-001 created",
                    new_values={"control_code": fin.control_code, "name": fin.name},
                ),
                VersionHistoryEntry(
                    control_id=itg.id,
                    change_date=now - timedelta(days=8),
                    changed_by=admin.name,
                    summary="Control ITG-005 created",
                    new_values={"control_code": itg.control_code, "name": itg.name},
                ),
                VersionHistoryEntry(
                    control_id=pro.id,
                    change_date=now - timedelta(days=2),
                    changed_by=admin.name,
                    summary="Updated status",
                    previous_values={"status": "draft"},
                    new_values={"status": "pending"},
                ),
            ]
        )
        await session.commit()

    log.info("demo_data_seeded")
    return True
