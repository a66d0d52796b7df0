from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from kurso.core.config import get_settings
from kurso.domain.context import STATUS_DELETED, STATUS_GRACE_PERIOD, STATUS_TRIAL, ActorContext, system_context
from kurso.persistence.db import SessionLocal
from kurso.persistence.repos import tenants as tenants_repo
from kurso.services.audit import actor_fields, record_event
from kurso.services.resilience import get_resilience_redis


logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "kurso:subscriptions:sweep:lock"

_local_lock = asyncio.Lock()
_local_lock_owner: str | None = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SweepSummary(BaseModel):
    moved_to_grace: int = Field(default=0, serialization_alias="movedToGrace")
    wiped_out: int = Field(default=0, serialization_alias="wipedOut")
    failed: int = 0
    status: str = "ok"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(slots=True)
class SweepLock:
    token: str
    redis: Any | None
    local: bool


async def _acquire_local_lock(token: str) -> SweepLock | None:
    global _local_lock_owner
    if _local_lock.locked():
        return None
    await _local_lock.acquire()
    _local_lock_owner = token
    return SweepLock(token=token, redis=None, local=True)


async def acquire_sweep_lock() -> SweepLock | None:
    # One sweep at a time across processes; the per-row claim still guards if the lock expires.
    settings = get_settings()
    token = uuid4().hex
    redis = await get_resilience_redis()
    ttl_s = max(5, int(settings.subscription_sweep_lock_ttl_s))
    if redis is not None:
        try:
            acquired = await redis.set(SWEEP_LOCK_KEY, token, nx=True, ex=ttl_s)
        except (RedisError, OSError) as exc:
            logger.warning("subscription_sweep_lock_redis_unavailable", exc_info=exc)
        else:
            if not acquired:
                return None
            return SweepLock(token=token, redis=redis, local=False)
    # In-process fallback for single-node dev and test runs.
    return await _acquire_local_lock(token)


async def release_sweep_lock(lock: SweepLock) -> None:
    # Release only if still owned so a newer holder is not clobbered.
    global _local_lock_owner
    if lock.local:
        if _local_lock.locked() and _local_lock_owner == lock.token:
            _local_lock_owner = None
            _local_lock.release()
        return
    if lock.redis is None:
        return
    try:
        current = await lock.redis.get(SWEEP_LOCK_KEY)
        value = current.decode("utf-8") if isinstance(current, (bytes, bytearray)) else str(current or "")
        if value == lock.token:
            await lock.redis.delete(SWEEP_LOCK_KEY)
    except (RedisError, OSError) as exc:
        logger.warning("subscription_sweep_lock_release_failed", exc_info=exc)


async def expire_trials(ctx: ActorContext, *, now: datetime) -> tuple[int, int]:
    """Move every trial whose end date has passed into the grace period."""
    async with SessionLocal() as session:
        candidates = [row.id for row in await tenants_repo.list_expired_trials(session, now=now)]

    moved = 0
    failed = 0
    for tenant_id in candidates:
        async with SessionLocal() as session:
            try:
                claimed = await tenants_repo.transition_status(
                    session,
                    tenant_id=tenant_id,
                    expected=STATUS_TRIAL,
                    target=STATUS_GRACE_PERIOD,
                    trial_ended_before=now,
                )
                await session.commit()
            except Exception:  # noqa: BLE001 - one tenant must not stop the sweep
                await session.rollback()
                logger.exception("subscription_grace_transition_failed tenant_id=%s", tenant_id)
                failed += 1
                continue
        if not claimed:
            continue
        moved += 1
        logger.info("subscription_grace_started tenant_id=%s", tenant_id)
        await record_event(
            tenant_id=tenant_id,
            **actor_fields(ctx),
            event_type="subscription.grace_started",
            outcome="success",
            resource_type="tenant",
            resource_id=tenant_id,
            metadata={"from": STATUS_TRIAL, "to": STATUS_GRACE_PERIOD},
        )
    return moved, failed


async def wipe_expired_tenants(
    ctx: ActorContext,
    *,
    now: datetime,
    grace_days: int,
) -> tuple[int, int]:
    """Irreversibly delete tenants whose grace window has elapsed.

    Each tenant is claimed with a conditional ``grace_period -> deleted``
    update and purged in the same transaction, so a failure leaves the
    tenant untouched in ``grace_period`` for the next run.
    """
    cutoff = now - timedelta(days=grace_days)
    async with SessionLocal() as session:
        candidates = [row.id for row in await tenants_repo.list_wipe_candidates(session, cutoff=cutoff)]

    wiped = 0
    failed = 0
    for tenant_id in candidates:
        async with SessionLocal() as session:
            try:
                claimed = await tenants_repo.transition_status(
                    session,
                    tenant_id=tenant_id,
                    expected=STATUS_GRACE_PERIOD,
                    target=STATUS_DELETED,
                    trial_ended_before=cutoff,
                )
                if not claimed:
                    await session.rollback()
                    continue
                counts = await tenants_repo.purge_tenant(session, tenant_id)
                await session.commit()
            except Exception as exc:  # noqa: BLE001 - one tenant must not stop the sweep
                await session.rollback()
                logger.exception("subscription_wipe_failed tenant_id=%s", tenant_id)
                failed += 1
                await record_event(
                    tenant_id=tenant_id,
                    **actor_fields(ctx),
                    event_type="tenant.wipe_failed",
                    outcome="failure",
                    resource_type="tenant",
                    resource_id=tenant_id,
                    metadata={"error": type(exc).__name__},
                    error_code="WIPE_FAILED",
                )
                continue
        wiped += 1
        logger.warning("subscription_tenant_wiped tenant_id=%s counts=%s", tenant_id, counts)
        await record_event(
            tenant_id=tenant_id,
            **actor_fields(ctx),
            event_type="tenant.wiped",
            outcome="success",
            resource_type="tenant",
            resource_id=tenant_id,
            metadata={"deleted": counts, "grace_days": grace_days},
        )
    return wiped, failed


async def run_subscription_sweep(
    ctx: ActorContext | None = None,
    *,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> SweepSummary:
    # Stateless: every decision comes from the stored status and trial_ends_at.
    ctx = ctx or system_context("subscription_sweep")
    current = now or utc_now()
    resolved_grace = grace_days if grace_days is not None else get_settings().subscription_grace_days
    lock = await acquire_sweep_lock()
    if lock is None:
        logger.info("subscription_sweep_skipped reason=locked")
        return SweepSummary(status="skipped_lock")
    try:
        moved, grace_failed = await expire_trials(ctx, now=current)
        wiped, wipe_failed = await wipe_expired_tenants(ctx, now=current, grace_days=resolved_grace)
    finally:
        await release_sweep_lock(lock)
    summary = SweepSummary(moved_to_grace=moved, wiped_out=wiped, failed=grace_failed + wipe_failed)
    logger.info(
        "subscription_sweep_done moved_to_grace=%s wiped_out=%s failed=%s",
        summary.moved_to_grace,
        summary.wiped_out,
        summary.failed,
    )
    return summary
