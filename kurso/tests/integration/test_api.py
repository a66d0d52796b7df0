from __future__ import annotations

from datetime import timedelta

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from kurso.apps.api.main import create_app
from kurso.core.config import get_settings
from kurso.core.errors import FatalConfigError
from kurso.providers.identity.factory import get_identity_provider
from kurso.providers.identity.fake import FakeIdentityProvider
from kurso.tests.utils.seed import (
    add_member,
    create_app_user,
    create_student,
    create_tenant,
    link_student_account,
    now_utc,
)


def _headers(user_id: str, tenant_id: str | None = None, *, global_role: str | None = None) -> dict[str, str]:
    headers = {"X-User-Id": user_id}
    if tenant_id:
        headers["X-Tenant-Id"] = tenant_id
    if global_role:
        headers["X-Global-Role"] = global_role
    return headers


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_uses_success_envelope() -> None:
    async with _client(create_app()) as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok"}
    assert body["meta"] == {"request_id": "req-1", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-1"


@pytest.mark.asyncio
async def test_missing_credentials_are_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_DEV_BYPASS", "false")
    get_settings.cache_clear()
    async with _client(create_app()) as client:
        response = await client.get("/v1/me/password-status")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_sweep_trigger_requires_service_token_when_configured(monkeypatch) -> None:
    monkeypatch.setenv("SCHEDULER_SERVICE_TOKEN", "cron-secret")
    get_settings.cache_clear()
    await create_tenant(status="trial", trial_ends_at=now_utc() - timedelta(minutes=1))

    async with _client(create_app()) as client:
        denied = await client.post("/v1/ops/subscriptions/sweep")
        allowed = await client.post("/v1/ops/subscriptions/sweep", headers={"X-Service-Token": "cron-secret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    data = allowed.json()["data"]
    assert data["movedToGrace"] == 1
    assert data["wipedOut"] == 0
    assert data["status"] == "ok"


@pytest.mark.asyncio
async def test_access_description_for_locked_tenant() -> None:
    tenant_id = await create_tenant(
        status="grace_period", trial_ends_at=now_utc() - timedelta(days=1), owner_id="owner-1"
    )
    async with _client(create_app()) as client:
        response = await client.get("/v1/tenants/current/access", headers=_headers("owner-1", tenant_id))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["locked"] is True
    assert data["in_grace_period"] is True
    assert data["wipe_at"] is not None


@pytest.mark.asyncio
async def test_locked_tenant_blocks_privileged_requests_except_for_superadmin() -> None:
    tenant_id = await create_tenant(
        status="trial", trial_ends_at=now_utc() - timedelta(minutes=5), owner_id="owner-1"
    )
    async with _client(create_app()) as client:
        blocked = await client.get("/v1/modules/income/access", headers=_headers("owner-1", tenant_id))
        bypass = await client.get(
            "/v1/modules/income/access",
            headers=_headers("root-1", tenant_id, global_role="superadmin"),
        )
    assert blocked.status_code == 402
    error = blocked.json()["error"]
    assert error["code"] == "TENANT_LOCKED"
    assert error["details"]["status"] == "trial"
    assert bypass.status_code == 200
    assert bypass.json()["data"] == {"module": "income", "allowed": True}


@pytest.mark.asyncio
async def test_module_permissions_flow() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    await add_member(tenant_id, "admin-1", role="admin")
    owner = _headers("owner-1", tenant_id)
    admin = _headers("admin-1", tenant_id)

    async with _client(create_app()) as client:
        put = await client.put(
            "/v1/admin/users/admin-1/modules",
            headers=owner,
            json={"allowed": ["dashboard", "students"]},
        )
        listed = await client.get("/v1/admin/users/admin-1/modules", headers=owner)
        denied = await client.get("/v1/modules/income/access", headers=admin)
        allowed = await client.get("/v1/modules/students/access", headers=admin)
        unknown = await client.put(
            "/v1/admin/users/admin-1/modules",
            headers=owner,
            json={"allowed": ["payroll"]},
        )
        forbidden = await client.get("/v1/admin/users/admin-1/modules", headers=admin)
        outsider = await client.get("/v1/admin/users/stranger/modules", headers=owner)

    assert put.status_code == 200
    assert put.json()["data"]["allowed"] == ["dashboard", "students"]
    assert len(listed.json()["data"]["denied"]) == 17
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "MODULE_DENIED"
    assert allowed.status_code == 200
    assert unknown.status_code == 422
    assert unknown.json()["error"]["code"] == "VALIDATION_ERROR"
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert outsider.status_code == 404


@pytest.mark.asyncio
async def test_unknown_module_access_is_a_validation_error() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    async with _client(create_app()) as client:
        response = await client.get("/v1/modules/payroll/access", headers=_headers("owner-1", tenant_id))
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_owner_provisions_student_accounts() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    await create_student(tenant_id, full_name="Ana Rojas", identity_number="12.345.678-5")
    await create_student(tenant_id, full_name="Benito Soto", identity_number=None)
    provider = FakeIdentityProvider()
    app = create_app()
    app.dependency_overrides[get_identity_provider] = lambda: provider

    async with _client(app) as client:
        response = await client.post("/v1/admin/student-accounts", headers=_headers("owner-1", tenant_id))
        other_tenant = await client.post(
            "/v1/admin/student-accounts?tenant_id=someone-else",
            headers=_headers("owner-1", tenant_id),
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["created"], data["skipped"], data["failed"]) == (1, 1, 0)
    assert len(data["results"]) == 2
    assert data["errors"] == []
    assert other_tenant.status_code == 403


@pytest.mark.asyncio
async def test_members_cannot_provision_and_locked_tenants_are_gated() -> None:
    open_tenant = await create_tenant(owner_id="owner-1")
    await add_member(open_tenant, "admin-1", role="admin")
    locked_tenant = await create_tenant(
        owner_id="owner-2", status="grace_period", trial_ends_at=now_utc() - timedelta(days=1)
    )
    app = create_app()
    app.dependency_overrides[get_identity_provider] = lambda: FakeIdentityProvider()

    async with _client(app) as client:
        member = await client.post("/v1/admin/student-accounts", headers=_headers("admin-1", open_tenant))
        locked = await client.post("/v1/admin/student-accounts", headers=_headers("owner-2", locked_tenant))

    assert member.status_code == 403
    assert locked.status_code == 402
    assert locked.json()["error"]["code"] == "TENANT_LOCKED"


@pytest.mark.asyncio
async def test_superadmin_rejects_unknown_tenant_filter() -> None:
    app = create_app()
    app.dependency_overrides[get_identity_provider] = lambda: FakeIdentityProvider()
    async with _client(app) as client:
        response = await client.post(
            "/v1/admin/student-accounts?tenant_id=missing",
            headers=_headers("root-1", global_role="superadmin"),
        )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_password_status_with_bearer_token() -> None:
    tenant_id = await create_tenant()
    student_id = await create_student(tenant_id, full_name="Ana Rojas", identity_number="12345678-5")
    await create_app_user(email="123456785@kurso.cl", user_id="student-user")
    await link_student_account(tenant_id, student_id, "student-user")
    settings = get_settings()
    token = jwt.encode(
        {"sub": "student-user", "aud": settings.auth_jwt_audience},
        settings.auth_jwt_secret,
        algorithm="HS256",
    )
    headers = {"Authorization": f"Bearer {token}"}

    async with _client(create_app()) as client:
        before = await client.get("/v1/me/password-status", headers=headers)
        changed = await client.post("/v1/me/password-changed", headers=headers)
        after = await client.get("/v1/me/password-status", headers=headers)
        bad = await client.get("/v1/me/password-status", headers={"Authorization": "Bearer not-a-jwt"})

    assert before.json()["data"] == {"user_id": "student-user", "must_change_password": True}
    assert changed.json()["data"]["updated"] is True
    assert after.json()["data"]["must_change_password"] is False
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_provisioned_student_is_denied_admin_modules() -> None:
    tenant_id = await create_tenant(owner_id="owner-1")
    student_id = await create_student(tenant_id, full_name="Ana Rojas", identity_number="12345678-5")
    await link_student_account(tenant_id, student_id, "student-user")

    async with _client(create_app()) as client:
        response = await client.get("/v1/modules/expenses/access", headers=_headers("student-user", tenant_id))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "MODULE_DENIED"


@pytest.mark.asyncio
async def test_default_jwt_secret_is_refused_without_dev_bypass(monkeypatch) -> None:
    monkeypatch.delenv("AUTH_JWT_SECRET", raising=False)
    monkeypatch.setenv("AUTH_DEV_BYPASS", "false")
    get_settings.cache_clear()
    with pytest.raises(FatalConfigError):
        create_app()

    monkeypatch.setenv("AUTH_DEV_BYPASS", "true")
    get_settings.cache_clear()
    assert create_app() is not None
