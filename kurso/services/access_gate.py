from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
import math
from typing import Any

from kurso.core.config import get_settings
from kurso.domain.context import (
    GLOBAL_ROLE_SUPERADMIN,
    STATUS_GRACE_PERIOD,
    STATUS_LOCKED,
    STATUS_TRIAL,
)


_LOCKED_STATUSES = frozenset({STATUS_GRACE_PERIOD, STATUS_LOCKED})


def as_utc(value: datetime | None) -> datetime | None:
    # Some drivers hand back naive datetimes; stored values are always UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_tenant_locked(
    status: str,
    trial_ends_at: datetime | None,
    now: datetime,
    caller_global_role: str | None,
) -> bool:
    # Evaluated on read, so access closes the moment a trial ends even before the sweep runs.
    if caller_global_role == GLOBAL_ROLE_SUPERADMIN:
        return False
    if status in _LOCKED_STATUSES:
        return True
    if status == STATUS_TRIAL:
        ends_at = as_utc(trial_ends_at)
        return ends_at is not None and ends_at < as_utc(now)
    return False


@dataclass(frozen=True)
class AccessDescription:
    tenant_id: str
    status: str
    locked: bool
    in_grace_period: bool
    trial_days_remaining: int | None
    trial_ends_at: datetime | None
    wipe_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("trial_ends_at", "wipe_at"):
            value = payload[key]
            payload[key] = value.isoformat() if value is not None else None
        return payload


def describe_access(
    *,
    tenant_id: str,
    status: str,
    trial_ends_at: datetime | None,
    now: datetime,
    caller_global_role: str | None,
    grace_days: int | None = None,
) -> AccessDescription:
    """Summarize what the tenant's subscription means for the caller right now.

    ``trial_days_remaining`` is rounded up and only reported for running trials.
    ``wipe_at`` is reported once the trial has ended and the tenant is still in
    a state the sweep will delete.
    """
    resolved_grace = grace_days if grace_days is not None else get_settings().subscription_grace_days
    current = as_utc(now)
    ends_at = as_utc(trial_ends_at)
    trial_expired = ends_at is not None and ends_at < current

    days_remaining: int | None = None
    if status == STATUS_TRIAL and ends_at is not None and not trial_expired:
        days_remaining = math.ceil((ends_at - current).total_seconds() / 86400)

    wipe_at: datetime | None = None
    if ends_at is not None and (
        status == STATUS_GRACE_PERIOD or (status == STATUS_TRIAL and trial_expired)
    ):
        wipe_at = ends_at + timedelta(days=resolved_grace)

    return AccessDescription(
        tenant_id=tenant_id,
        status=status,
        locked=is_tenant_locked(status, ends_at, current, caller_global_role),
        in_grace_period=status == STATUS_GRACE_PERIOD or (status == STATUS_TRIAL and trial_expired),
        trial_days_remaining=days_remaining,
        trial_ends_at=ends_at,
        wipe_at=wipe_at,
    )
