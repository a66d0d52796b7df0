from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from kurso.domain.models import AppUser, RoleAssignment, Student, StudentLink, Tenant, TenantMembership
from kurso.persistence.db import SessionLocal


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def create_tenant(
    *,
    tenant_id: str | None = None,
    status: str = "trial",
    trial_ends_at: datetime | None = None,
    owner_id: str | None = None,
) -> str:
    tenant_id = tenant_id or f"t-{uuid4().hex}"
    async with SessionLocal() as session:
        session.add(
            Tenant(
                id=tenant_id,
                name=f"Curso {tenant_id[-6:]}",
                owner_id=owner_id,
                subscription_status=status,
                trial_ends_at=trial_ends_at if trial_ends_at is not None else now_utc() + timedelta(days=7),
            )
        )
        await session.commit()
    return tenant_id


async def create_student(tenant_id: str, *, full_name: str, identity_number: str | None) -> str:
    student_id = f"s-{uuid4().hex}"
    async with SessionLocal() as session:
        session.add(
            Student(
                id=student_id,
                tenant_id=tenant_id,
                full_name=full_name,
                identity_number=identity_number,
            )
        )
        await session.commit()
    return student_id


async def create_app_user(*, email: str, user_id: str | None = None, is_superadmin: bool = False) -> str:
    user_id = user_id or f"u-{uuid4().hex}"
    async with SessionLocal() as session:
        session.add(AppUser(id=user_id, email=email, full_name=email.split("@")[0], is_superadmin=is_superadmin))
        await session.commit()
    return user_id


async def add_member(tenant_id: str, user_id: str, *, role: str = "admin", status: str = "active") -> None:
    async with SessionLocal() as session:
        session.add(
            TenantMembership(
                id=uuid4().hex,
                tenant_id=tenant_id,
                user_id=user_id,
                role=role,
                status=status,
            )
        )
        await session.commit()


async def link_student_account(
    tenant_id: str,
    student_id: str,
    user_id: str,
    *,
    role: str = "student",
    first_login: bool = True,
) -> None:
    # Seed the three rows a fully provisioned student account consists of.
    async with SessionLocal() as session:
        session.add(RoleAssignment(id=uuid4().hex, user_id=user_id, role=role, user_name=None, first_login=first_login))
        session.add(StudentLink(id=uuid4().hex, user_id=user_id, student_id=student_id, display_name=None))
        session.add(
            TenantMembership(id=uuid4().hex, tenant_id=tenant_id, user_id=user_id, role="student", status="active")
        )
        await session.commit()
