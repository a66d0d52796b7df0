from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.apps.api.deps import get_actor_context, get_db, require_tenant_admin, require_unlocked_tenant
from kurso.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kurso.apps.api.response import SuccessEnvelope, success_response
from kurso.domain.context import ActorContext
from kurso.domain.models import Tenant
from kurso.persistence.repos import accounts as accounts_repo
from kurso.services.permissions import (
    list_allowed_modules,
    list_denied_modules,
    parse_module,
    replace_module_permissions,
    resolve_module_access,
)


router = APIRouter(tags=["permissions"], responses=DEFAULT_ERROR_RESPONSES)


class ModulePermissionsRequest(BaseModel):
    allowed: list[str]


class ModulePermissionsResponse(BaseModel):
    user_id: str
    allowed: list[str]
    denied: list[str]


class ModuleAccessResponse(BaseModel):
    module: str
    allowed: bool


async def _ensure_member(db: AsyncSession, ctx: ActorContext, *, tenant: Tenant, user_id: str) -> None:
    # Owners manage only users of their own tenant.
    if ctx.is_superadmin:
        return
    membership = await accounts_repo.get_membership(db, tenant_id=tenant.id, user_id=user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "USER_NOT_IN_TENANT", "message": "User is not a member of this tenant"},
        )


async def _permissions_payload(db: AsyncSession, user_id: str) -> ModulePermissionsResponse:
    return ModulePermissionsResponse(
        user_id=user_id,
        allowed=await list_allowed_modules(db, user_id),
        denied=await list_denied_modules(db, user_id),
    )


@router.get("/admin/users/{user_id}/modules", response_model=SuccessEnvelope[ModulePermissionsResponse])
async def get_user_modules(
    user_id: str,
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(require_tenant_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _ensure_member(db, ctx, tenant=tenant, user_id=user_id)
    return success_response(request=request, data=await _permissions_payload(db, user_id))


@router.put("/admin/users/{user_id}/modules", response_model=SuccessEnvelope[ModulePermissionsResponse])
async def put_user_modules(
    user_id: str,
    payload: ModulePermissionsRequest,
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(require_tenant_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _ensure_member(db, ctx, tenant=tenant, user_id=user_id)
    await replace_module_permissions(db, ctx, user_id=user_id, allowed=payload.allowed)
    return success_response(request=request, data=await _permissions_payload(db, user_id))


@router.get("/modules/{module}/access", response_model=SuccessEnvelope[ModuleAccessResponse])
async def module_access(
    module: str,
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(require_unlocked_tenant),
    db: AsyncSession = Depends(get_db),
) -> dict:
    resolved = parse_module(module)
    allowed = await resolve_module_access(db, ctx, tenant=tenant, module=resolved.value)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "MODULE_DENIED", "message": f"Access to {resolved.value} is restricted"},
        )
    return success_response(request=request, data=ModuleAccessResponse(module=resolved.value, allowed=True))
