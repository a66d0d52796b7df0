from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kurso.services.access_gate import describe_access, is_tenant_locked


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("status", "trial_ends_at", "expected"),
    [
        ("trial", NOW + timedelta(days=2), False),
        ("trial", NOW - timedelta(seconds=1), True),
        ("trial", None, False),
        ("grace_period", NOW + timedelta(days=2), True),
        ("locked", None, True),
        ("active", NOW - timedelta(days=30), False),
        ("canceled", NOW - timedelta(days=30), False),
    ],
)
def test_lock_follows_status_and_trial_end(status, trial_ends_at, expected) -> None:
    assert is_tenant_locked(status, trial_ends_at, NOW, "user") is expected


@pytest.mark.parametrize("status", ["trial", "grace_period", "locked"])
def test_superadmin_is_never_locked(status: str) -> None:
    assert is_tenant_locked(status, NOW - timedelta(days=1), NOW, "superadmin") is False


def test_naive_trial_end_is_treated_as_utc() -> None:
    naive = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
    assert is_tenant_locked("trial", naive, NOW, "user") is True


def test_describe_running_trial_rounds_days_up() -> None:
    description = describe_access(
        tenant_id="t1",
        status="trial",
        trial_ends_at=NOW + timedelta(days=2, hours=1),
        now=NOW,
        caller_global_role="user",
        grace_days=3,
    )
    assert description.locked is False
    assert description.in_grace_period is False
    assert description.trial_days_remaining == 3
    assert description.wipe_at is None


def test_describe_grace_period_reports_wipe_deadline() -> None:
    ends_at = NOW - timedelta(days=1)
    description = describe_access(
        tenant_id="t1",
        status="grace_period",
        trial_ends_at=ends_at,
        now=NOW,
        caller_global_role="user",
        grace_days=3,
    )
    assert description.locked is True
    assert description.in_grace_period is True
    assert description.trial_days_remaining is None
    assert description.wipe_at == ends_at + timedelta(days=3)
    assert description.to_dict()["wipe_at"] == (ends_at + timedelta(days=3)).isoformat()


def test_describe_expired_trial_before_sweep_runs() -> None:
    description = describe_access(
        tenant_id="t1",
        status="trial",
        trial_ends_at=NOW - timedelta(hours=1),
        now=NOW,
        caller_global_role="user",
        grace_days=3,
    )
    assert description.locked is True
    assert description.in_grace_period is True
    assert description.wipe_at is not None
