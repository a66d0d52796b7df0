from __future__ import annotations

from datetime import datetime, timezone
import hmac
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.apps.api.response import get_request_id
from kurso.core.config import get_settings
from kurso.domain.context import (
    GLOBAL_ROLE_SUPERADMIN,
    GLOBAL_ROLE_USER,
    TENANT_ROLE_OWNER,
    ActorContext,
)
from kurso.domain.models import Tenant
from kurso.persistence.db import get_session
from kurso.persistence.repos import accounts as accounts_repo
from kurso.persistence.repos import tenants as tenants_repo
from kurso.services.access_gate import describe_access, is_tenant_locked


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _decode_access_token(token: str) -> str:
    # Access tokens come from the identity provider; ``sub`` is the identity id.
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
        )
    except jwt.PyJWTError as exc:
        raise _auth_error("Invalid or expired access token") from exc
    subject = claims.get("sub")
    if not subject:
        raise _auth_error("Access token has no subject")
    return str(subject)


async def _resolve_tenant_role(db: AsyncSession, *, tenant_id: str | None, user_id: str) -> str | None:
    # Ownership wins over membership; inactive memberships grant nothing.
    if not tenant_id:
        return None
    tenant = await tenants_repo.get_tenant(db, tenant_id)
    if tenant is None:
        return None
    if tenant.owner_id == user_id:
        return TENANT_ROLE_OWNER
    membership = await accounts_repo.get_membership(db, tenant_id=tenant_id, user_id=user_id)
    if membership is None or membership.status != "active":
        return None
    return membership.role


async def get_actor_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ActorContext:
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get("Authorization"))
    tenant_id = request.headers.get("X-Tenant-Id") or None
    if token is not None:
        user_id = _decode_access_token(token)
        app_user = await accounts_repo.get_app_user(db, user_id)
        global_role = GLOBAL_ROLE_SUPERADMIN if app_user is not None and app_user.is_superadmin else GLOBAL_ROLE_USER
    elif settings.auth_dev_bypass:
        # Header identities only when explicitly enabled for local dev.
        user_id = request.headers.get("X-User-Id")
        if not user_id:
            raise _auth_error("X-User-Id header is required in dev bypass mode")
        global_role = request.headers.get("X-Global-Role") or GLOBAL_ROLE_USER
    else:
        raise _auth_error("Missing or invalid bearer token")

    role = await _resolve_tenant_role(db, tenant_id=tenant_id, user_id=user_id)
    return ActorContext(
        tenant_id=tenant_id,
        caller_id=user_id,
        caller_role=role,
        caller_global_role=global_role,
        request_id=get_request_id(request),
    )


async def get_current_tenant(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    if not ctx.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "TENANT_REQUIRED", "message": "X-Tenant-Id header is required"},
        )
    tenant = await tenants_repo.get_tenant(db, ctx.tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "TENANT_NOT_FOUND", "message": "Tenant not found"},
        )
    if ctx.caller_role is None and not ctx.is_superadmin:
        raise _forbidden_error("Caller does not belong to this tenant")
    return tenant


def ensure_tenant_unlocked(tenant: Tenant, ctx: ActorContext) -> None:
    now = datetime.now(timezone.utc)
    if not is_tenant_locked(tenant.subscription_status, tenant.trial_ends_at, now, ctx.caller_global_role):
        return
    description = describe_access(
        tenant_id=tenant.id,
        status=tenant.subscription_status,
        trial_ends_at=tenant.trial_ends_at,
        now=now,
        caller_global_role=ctx.caller_global_role,
    ).to_dict()
    raise HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={
            "code": "TENANT_LOCKED",
            "message": "Subscription expired; access is locked",
            "status": description["status"],
            "trial_ends_at": description["trial_ends_at"],
            "wipe_at": description["wipe_at"],
        },
    )


async def require_unlocked_tenant(
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(get_current_tenant),
) -> Tenant:
    # Gate every privileged tenant request on the subscription state.
    ensure_tenant_unlocked(tenant, ctx)
    return tenant


def ensure_tenant_admin(ctx: ActorContext) -> None:
    if ctx.is_superadmin or ctx.caller_role == TENANT_ROLE_OWNER:
        return
    raise _forbidden_error("Tenant owner or super-admin required")


async def require_tenant_admin(
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(require_unlocked_tenant),
) -> Tenant:
    ensure_tenant_admin(ctx)
    return tenant


async def require_service_token(
    x_service_token: str | None = Header(default=None, alias="X-Service-Token"),
) -> None:
    # Shared secret for the scheduler trigger; unset leaves the trigger open for local runs.
    expected = get_settings().scheduler_service_token
    if not expected:
        return
    if not x_service_token or not hmac.compare_digest(x_service_token, expected):
        raise _auth_error("Invalid service token")
