from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.apps.api.deps import get_actor_context, get_db
from kurso.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kurso.apps.api.response import SuccessEnvelope, success_response
from kurso.domain.context import ActorContext
from kurso.services.provisioning import has_default_password, mark_password_changed


router = APIRouter(prefix="/me", tags=["me"], responses=DEFAULT_ERROR_RESPONSES)


class PasswordStatusResponse(BaseModel):
    user_id: str
    must_change_password: bool


class PasswordChangedResponse(BaseModel):
    user_id: str
    updated: bool


@router.get("/password-status", response_model=SuccessEnvelope[PasswordStatusResponse])
async def password_status(
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    must_change = await has_default_password(db, ctx.caller_id)
    return success_response(
        request=request,
        data=PasswordStatusResponse(user_id=ctx.caller_id, must_change_password=must_change),
    )


# Called by the client after the provider confirms the password change.
@router.post("/password-changed", response_model=SuccessEnvelope[PasswordChangedResponse])
async def password_changed(
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await mark_password_changed(db, ctx.caller_id)
    return success_response(
        request=request,
        data=PasswordChangedResponse(user_id=ctx.caller_id, updated=updated),
    )
