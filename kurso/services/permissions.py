from __future__ import annotations

from enum import Enum
import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from kurso.core.errors import ValidationError
from kurso.domain.context import TENANT_ROLE_ADMIN, ActorContext
from kurso.domain.models import Tenant
from kurso.persistence.repos import permissions as permissions_repo
from kurso.services.audit import actor_fields, record_event


logger = logging.getLogger(__name__)


class AppModule(str, Enum):
    DASHBOARD = "dashboard"
    STUDENTS = "students"
    INCOME = "income"
    EXPENSES = "expenses"
    DEBT_REPORTS = "debt_reports"
    PAYMENT_REPORTS = "payment_reports"
    BALANCE = "balance"
    IMPORT = "import"
    MOVEMENTS = "movements"
    ACTIVITIES = "activities"
    ACTIVITY_EXCLUSIONS = "activity_exclusions"
    ACTIVITY_PAYMENTS = "activity_payments"
    MONTHLY_FEES = "monthly_fees"
    PAYMENT_NOTIFICATIONS = "payment_notifications"
    REIMBURSEMENTS = "reimbursements"
    SCHEDULED_ACTIVITIES = "scheduled_activities"
    STUDENT_PROFILE = "student_profile"
    CREDIT_MANAGEMENT = "credit_management"
    CREDIT_MOVEMENTS = "credit_movements"


ALL_MODULES: tuple[str, ...] = tuple(module.value for module in AppModule)


def parse_module(value: str) -> AppModule:
    try:
        return AppModule(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown module: {value}") from exc


async def list_denied_modules(session: AsyncSession, user_id: str) -> list[str]:
    return await permissions_repo.list_denied_modules(session, user_id)


async def list_allowed_modules(session: AsyncSession, user_id: str) -> list[str]:
    denied = set(await permissions_repo.list_denied_modules(session, user_id))
    return [module for module in ALL_MODULES if module not in denied]


async def is_module_allowed(session: AsyncSession, user_id: str, module: str) -> bool:
    # Deny-list semantics: no row means allowed.
    resolved = parse_module(module)
    return not await permissions_repo.has_deny_entry(session, user_id=user_id, module=resolved.value)


async def resolve_module_access(
    session: AsyncSession,
    ctx: ActorContext,
    *,
    tenant: Tenant | None,
    module: str,
) -> bool:
    resolved = parse_module(module)
    if ctx.is_superadmin:
        return True
    if tenant is not None and ctx.caller_id is not None and tenant.owner_id == ctx.caller_id:
        return True
    # The overlay only narrows administrators; students and plain members get no admin modules.
    if ctx.caller_id is None or ctx.caller_role != TENANT_ROLE_ADMIN:
        return False
    return await is_module_allowed(session, ctx.caller_id, resolved.value)


async def replace_module_permissions(
    session: AsyncSession,
    ctx: ActorContext,
    *,
    user_id: str,
    allowed: Iterable[str],
) -> list[str]:
    """Replace a user's deny list so exactly ``allowed`` remains reachable.

    Every module outside ``allowed`` gets a deny row. Unknown module names are
    rejected before anything is written.
    """
    allowed_set = {parse_module(value).value for value in allowed}
    denied = [module for module in ALL_MODULES if module not in allowed_set]
    await permissions_repo.replace_deny_entries(session, user_id=user_id, modules=denied)
    await session.commit()
    logger.info("module_permissions_replaced user_id=%s denied=%s", user_id, len(denied))
    await record_event(
        session=session,
        tenant_id=ctx.tenant_id,
        **actor_fields(ctx),
        event_type="permissions.replaced",
        outcome="success",
        resource_type="user",
        resource_id=user_id,
        metadata={"denied": denied},
        commit=True,
    )
    return denied
