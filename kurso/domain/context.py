from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


SubscriptionStatus = Literal["trial", "grace_period", "active", "locked", "canceled"]

STATUS_TRIAL = "trial"
STATUS_GRACE_PERIOD = "grace_period"
STATUS_ACTIVE = "active"
STATUS_LOCKED = "locked"
STATUS_CANCELED = "canceled"
# Terminal state; the tenant row no longer exists once reached.
STATUS_DELETED = "deleted"

GLOBAL_ROLE_SUPERADMIN = "superadmin"
GLOBAL_ROLE_USER = "user"

TENANT_ROLE_OWNER = "owner"
TENANT_ROLE_ADMIN = "admin"
TENANT_ROLE_STUDENT = "student"
TENANT_ROLE_MEMBER = "member"

# Application role written to user_roles for provisioned student accounts.
STUDENT_ACCOUNT_ROLE = "student"


@dataclass(frozen=True)
class ActorContext:
    # Passed explicitly into every entry point instead of ambient tenant/role state.
    tenant_id: str | None
    caller_id: str | None
    caller_role: str | None
    caller_global_role: str = GLOBAL_ROLE_USER
    request_id: str | None = None

    @property
    def is_superadmin(self) -> bool:
        return self.caller_global_role == GLOBAL_ROLE_SUPERADMIN


def system_context(name: str) -> ActorContext:
    # Scheduled and CLI runs act as an unscoped system principal.
    return ActorContext(
        tenant_id=None,
        caller_id=name,
        caller_role="system",
        caller_global_role=GLOBAL_ROLE_SUPERADMIN,
    )
