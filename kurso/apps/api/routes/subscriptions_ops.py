from __future__ import annotations

from dataclasses import replace

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from kurso.apps.api.deps import require_service_token
from kurso.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kurso.apps.api.response import SuccessEnvelope, get_request_id, success_response
from kurso.domain.context import system_context
from kurso.services.subscriptions import run_subscription_sweep


router = APIRouter(prefix="/ops/subscriptions", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class SweepResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    moved_to_grace: int = Field(alias="movedToGrace")
    wiped_out: int = Field(alias="wipedOut")
    failed: int
    status: str


@router.post(
    "/sweep",
    response_model=SuccessEnvelope[SweepResponse],
    response_model_by_alias=True,
    dependencies=[Depends(require_service_token)],
)
async def trigger_sweep(request: Request) -> dict:
    # Scheduler entry point; the sweep itself is idempotent so retries are harmless.
    ctx = replace(system_context("scheduler"), request_id=get_request_id(request))
    summary = await run_subscription_sweep(ctx)
    return success_response(request=request, data=summary.to_dict())
