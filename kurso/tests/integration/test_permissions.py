from __future__ import annotations

import pytest

from kurso.core.errors import ValidationError
from kurso.domain.context import ActorContext
from kurso.persistence.db import SessionLocal
from kurso.persistence.repos import tenants as tenants_repo
from kurso.services.permissions import (
    ALL_MODULES,
    is_module_allowed,
    list_allowed_modules,
    list_denied_modules,
    replace_module_permissions,
    resolve_module_access,
)
from kurso.tests.utils.seed import create_tenant


def _owner_ctx(tenant_id: str) -> ActorContext:
    return ActorContext(tenant_id=tenant_id, caller_id="owner-1", caller_role="owner")


def test_module_set_is_closed() -> None:
    assert len(ALL_MODULES) == 19
    assert "credit_movements" in ALL_MODULES and "import" in ALL_MODULES


@pytest.mark.asyncio
async def test_no_entries_means_everything_allowed() -> None:
    async with SessionLocal() as session:
        assert await is_module_allowed(session, "admin-1", "income") is True
        assert await list_allowed_modules(session, "admin-1") == list(ALL_MODULES)
        assert await list_denied_modules(session, "admin-1") == []


@pytest.mark.asyncio
async def test_replace_denies_everything_outside_allowed_and_is_idempotent() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    async with SessionLocal() as session:
        first = await replace_module_permissions(
            session, _owner_ctx(tenant_id), user_id="admin-1", allowed=["dashboard", "students"]
        )
        second = await replace_module_permissions(
            session, _owner_ctx(tenant_id), user_id="admin-1", allowed=["students", "dashboard"]
        )
        assert first == second
        assert len(first) == 17
        assert await list_allowed_modules(session, "admin-1") == ["dashboard", "students"]
        assert await is_module_allowed(session, "admin-1", "income") is False
        assert await is_module_allowed(session, "admin-1", "students") is True


@pytest.mark.asyncio
async def test_unknown_module_is_rejected_without_writing() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    async with SessionLocal() as session:
        await replace_module_permissions(session, _owner_ctx(tenant_id), user_id="admin-1", allowed=["income"])
        with pytest.raises(ValidationError):
            await replace_module_permissions(
                session, _owner_ctx(tenant_id), user_id="admin-1", allowed=["income", "payroll"]
            )
        assert await list_allowed_modules(session, "admin-1") == ["income"]
        with pytest.raises(ValidationError):
            await is_module_allowed(session, "admin-1", "payroll")


@pytest.mark.asyncio
async def test_owner_and_superadmin_bypass_the_deny_list() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    async with SessionLocal() as session:
        await replace_module_permissions(session, _owner_ctx(tenant_id), user_id="owner-1", allowed=[])
        await replace_module_permissions(session, _owner_ctx(tenant_id), user_id="admin-1", allowed=[])
        await replace_module_permissions(session, _owner_ctx(tenant_id), user_id="root-1", allowed=[])
        tenant = await tenants_repo.get_tenant(session, tenant_id)

        owner = _owner_ctx(tenant_id)
        admin = ActorContext(tenant_id=tenant_id, caller_id="admin-1", caller_role="admin")
        root = ActorContext(
            tenant_id=tenant_id, caller_id="root-1", caller_role=None, caller_global_role="superadmin"
        )
        assert await resolve_module_access(session, owner, tenant=tenant, module="balance") is True
        assert await resolve_module_access(session, root, tenant=tenant, module="balance") is True
        assert await resolve_module_access(session, admin, tenant=tenant, module="balance") is False


@pytest.mark.asyncio
async def test_single_deny_entry_only_removes_that_module() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    allowed = [module for module in ALL_MODULES if module != "expenses"]
    async with SessionLocal() as session:
        denied = await replace_module_permissions(session, _owner_ctx(tenant_id), user_id="admin-1", allowed=allowed)
        assert denied == ["expenses"]
        assert await list_denied_modules(session, "admin-1") == ["expenses"]
        assert await list_allowed_modules(session, "admin-1") == allowed
        assert len(allowed) == 18
        for module in allowed:
            assert await is_module_allowed(session, "admin-1", module) is True
        assert await is_module_allowed(session, "admin-1", "expenses") is False


@pytest.mark.asyncio
async def test_non_admin_members_get_no_admin_modules() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    async with SessionLocal() as session:
        tenant = await tenants_repo.get_tenant(session, tenant_id)
        student = ActorContext(tenant_id=tenant_id, caller_id="student-user", caller_role="student")
        member = ActorContext(tenant_id=tenant_id, caller_id="member-1", caller_role="member")
        admin = ActorContext(tenant_id=tenant_id, caller_id="admin-1", caller_role="admin")
        assert await resolve_module_access(session, student, tenant=tenant, module="expenses") is False
        assert await resolve_module_access(session, member, tenant=tenant, module="dashboard") is False
        assert await resolve_module_access(session, admin, tenant=tenant, module="expenses") is True
