from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.core.errors import ConflictError, DatabaseError
from kurso.domain.models import AppUser, RoleAssignment, Student, StudentLink, TenantMembership
from kurso.persistence.db import is_unique_violation
from kurso.persistence.guards import require_tenant_id, tenant_predicate


async def list_students(session: AsyncSession, *, tenant_id: str) -> list[Student]:
    # Name ordering matches the operator-facing import order.
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(Student)
        .where(tenant_predicate(Student, tenant_id))
        .order_by(Student.full_name, Student.id)
    )
    return list(result.scalars().all())


async def get_student_link(session: AsyncSession, student_id: str) -> StudentLink | None:
    result = await session.execute(select(StudentLink).where(StudentLink.student_id == student_id))
    return result.scalar_one_or_none()


async def get_role_assignment(session: AsyncSession, user_id: str) -> RoleAssignment | None:
    result = await session.execute(select(RoleAssignment).where(RoleAssignment.user_id == user_id))
    return result.scalar_one_or_none()


async def get_membership(
    session: AsyncSession, *, tenant_id: str, user_id: str
) -> TenantMembership | None:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(TenantMembership).where(
            tenant_predicate(TenantMembership, tenant_id),
            TenantMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def find_directory_user_id(session: AsyncSession, email: str) -> str | None:
    # Point lookup served by the unique email index; directory rows are stored lowercase.
    result = await session.execute(
        select(AppUser.id).where(AppUser.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_app_user(session: AsyncSession, user_id: str) -> AppUser | None:
    result = await session.execute(select(AppUser).where(AppUser.id == user_id))
    return result.scalar_one_or_none()


async def _insert(session: AsyncSession, row: object, *, label: str) -> None:
    # Flush immediately so uniqueness violations surface at this seam as ConflictError.
    session.add(row)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        if is_unique_violation(exc):
            raise ConflictError(f"{label} already exists") from exc
        raise DatabaseError(f"{label} insert failed") from exc


async def insert_role_assignment(
    session: AsyncSession,
    *,
    user_id: str,
    role: str,
    user_name: str | None,
    first_login: bool = True,
) -> RoleAssignment:
    row = RoleAssignment(
        id=uuid4().hex,
        user_id=user_id,
        role=role,
        user_name=user_name,
        first_login=first_login,
    )
    await _insert(session, row, label="role assignment")
    return row


async def insert_student_link(
    session: AsyncSession,
    *,
    user_id: str,
    student_id: str,
    display_name: str | None,
) -> StudentLink:
    row = StudentLink(
        id=uuid4().hex,
        user_id=user_id,
        student_id=student_id,
        display_name=display_name,
    )
    await _insert(session, row, label="student link")
    return row


async def insert_membership(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    role: str,
    status: str = "active",
) -> TenantMembership:
    require_tenant_id(tenant_id)
    row = TenantMembership(
        id=uuid4().hex,
        tenant_id=tenant_id,
        user_id=user_id,
        role=role,
        status=status,
    )
    await _insert(session, row, label="tenant membership")
    return row


async def set_first_login(session: AsyncSession, *, user_id: str, first_login: bool) -> bool:
    result = await session.execute(
        update(RoleAssignment)
        .where(RoleAssignment.user_id == user_id)
        .values(first_login=first_login)
    )
    return (result.rowcount or 0) > 0


async def insert_app_user(
    session: AsyncSession,
    *,
    user_id: str,
    email: str,
    full_name: str | None,
) -> AppUser:
    # Mirror provider identities so duplicate recovery can stay a local point lookup.
    row = AppUser(id=user_id, email=email.strip().lower(), full_name=full_name, is_superadmin=False)
    await _insert(session, row, label="directory user")
    return row
