from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from kurso.apps.api.deps import get_actor_context, get_current_tenant
from kurso.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kurso.apps.api.response import SuccessEnvelope, success_response
from kurso.domain.context import ActorContext
from kurso.domain.models import Tenant
from kurso.services.access_gate import describe_access


router = APIRouter(prefix="/tenants", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class AccessResponse(BaseModel):
    tenant_id: str
    status: str
    locked: bool
    in_grace_period: bool
    trial_days_remaining: int | None
    trial_ends_at: str | None
    wipe_at: str | None


# Not gated: locked tenants need this to render the lock notice.
@router.get("/current/access", response_model=SuccessEnvelope[AccessResponse])
async def current_access(
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    tenant: Tenant = Depends(get_current_tenant),
) -> dict:
    description = describe_access(
        tenant_id=tenant.id,
        status=tenant.subscription_status,
        trial_ends_at=tenant.trial_ends_at,
        now=datetime.now(timezone.utc),
        caller_global_role=ctx.caller_global_role,
    )
    return success_response(request=request, data=description.to_dict())
