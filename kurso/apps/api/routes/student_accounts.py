from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.apps.api.deps import ensure_tenant_admin, ensure_tenant_unlocked, get_actor_context, get_db
from kurso.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kurso.apps.api.response import SuccessEnvelope, success_response
from kurso.domain.context import ActorContext
from kurso.persistence.repos import tenants as tenants_repo
from kurso.providers.identity.base import IdentityProvider
from kurso.providers.identity.factory import get_identity_provider
from kurso.services.provisioning import provision_accounts


router = APIRouter(prefix="/admin", tags=["provisioning"], responses=DEFAULT_ERROR_RESPONSES)


class SubjectOutcomeResponse(BaseModel):
    subject_id: str
    tenant_id: str
    full_name: str
    outcome: str
    reason: str | None = None
    user_id: str | None = None
    email: str | None = None
    membership_missing: bool = False


class BatchReportResponse(BaseModel):
    created: int
    linked: int
    skipped: int
    failed: int
    results: list[SubjectOutcomeResponse]
    errors: list[SubjectOutcomeResponse]


def _tenant_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "TENANT_NOT_FOUND", "message": "Tenant not found"},
    )


@router.post("/student-accounts", response_model=SuccessEnvelope[BatchReportResponse])
async def create_student_accounts(
    request: Request,
    tenant_id: str | None = Query(default=None),
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> dict:
    # Super-admins may target any tenant or all of them; owners only their own.
    if ctx.is_superadmin:
        target = tenant_id
        if target is not None and await tenants_repo.get_tenant(db, target) is None:
            raise _tenant_not_found()
    else:
        if not ctx.tenant_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "TENANT_REQUIRED", "message": "X-Tenant-Id header is required"},
            )
        if tenant_id is not None and tenant_id != ctx.tenant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "AUTH_FORBIDDEN", "message": "tenant_id filter requires super-admin"},
            )
        tenant = await tenants_repo.get_tenant(db, ctx.tenant_id)
        if tenant is None:
            raise _tenant_not_found()
        ensure_tenant_admin(ctx)
        ensure_tenant_unlocked(tenant, ctx)
        target = ctx.tenant_id
    report = await provision_accounts(ctx, tenant_id=target, provider=provider)
    return success_response(request=request, data=report.to_dict())
