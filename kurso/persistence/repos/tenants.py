from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.domain.models import RoleAssignment, Student, StudentLink, Tenant, TenantMembership


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def list_tenant_ids(session: AsyncSession) -> list[str]:
    # Stable ordering keeps batch reports comparable between runs.
    result = await session.execute(select(Tenant.id).order_by(Tenant.created_at, Tenant.id))
    return list(result.scalars().all())


async def list_expired_trials(session: AsyncSession, *, now: datetime) -> list[Tenant]:
    result = await session.execute(
        select(Tenant)
        .where(
            Tenant.subscription_status == "trial",
            Tenant.trial_ends_at.is_not(None),
            Tenant.trial_ends_at < now,
        )
        .order_by(Tenant.id)
    )
    return list(result.scalars().all())


async def list_wipe_candidates(session: AsyncSession, *, cutoff: datetime) -> list[Tenant]:
    # Grace runs from trial_ends_at, so the cutoff is now minus the grace window.
    result = await session.execute(
        select(Tenant)
        .where(
            Tenant.subscription_status == "grace_period",
            Tenant.trial_ends_at.is_not(None),
            Tenant.trial_ends_at < cutoff,
        )
        .order_by(Tenant.id)
    )
    return list(result.scalars().all())


async def transition_status(
    session: AsyncSession,
    *,
    tenant_id: str,
    expected: str,
    target: str,
    trial_ended_before: datetime,
) -> bool:
    # Conditional update acts as a claim: only one writer observes rowcount == 1.
    # The deadline is re-checked so a trial extended after candidate selection is left alone.
    result = await session.execute(
        update(Tenant)
        .where(
            Tenant.id == tenant_id,
            Tenant.subscription_status == expected,
            Tenant.trial_ends_at.is_not(None),
            Tenant.trial_ends_at < trial_ended_before,
        )
        .values(subscription_status=target)
    )
    return (result.rowcount or 0) == 1


async def purge_tenant(session: AsyncSession, tenant_id: str) -> dict[str, int]:
    # Delete most-dependent rows first so the wipe does not rely on ON DELETE CASCADE.
    student_ids = select(Student.id).where(Student.tenant_id == tenant_id)
    linked_user_ids = set(
        (
            await session.execute(
                select(StudentLink.user_id).where(StudentLink.student_id.in_(student_ids))
            )
        ).scalars().all()
    )
    shared_user_ids: set[str] = set()
    if linked_user_ids:
        # Keep role rows for identities that still belong to another tenant.
        shared_user_ids = set(
            (
                await session.execute(
                    select(TenantMembership.user_id).where(
                        TenantMembership.user_id.in_(linked_user_ids),
                        TenantMembership.tenant_id != tenant_id,
                    )
                )
            ).scalars().all()
        )
    exclusive_user_ids = linked_user_ids - shared_user_ids

    links = await session.execute(delete(StudentLink).where(StudentLink.student_id.in_(student_ids)))
    roles_deleted = 0
    if exclusive_user_ids:
        roles = await session.execute(
            delete(RoleAssignment).where(RoleAssignment.user_id.in_(exclusive_user_ids))
        )
        roles_deleted = int(roles.rowcount or 0)
    members = await session.execute(delete(TenantMembership).where(TenantMembership.tenant_id == tenant_id))
    students = await session.execute(delete(Student).where(Student.tenant_id == tenant_id))
    tenants = await session.execute(delete(Tenant).where(Tenant.id == tenant_id))
    return {
        "student_links": int(links.rowcount or 0),
        "role_assignments": roles_deleted,
        "memberships": int(members.rowcount or 0),
        "students": int(students.rowcount or 0),
        "tenants": int(tenants.rowcount or 0),
    }
