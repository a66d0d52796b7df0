from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before kurso.persistence.db is imported.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="kurso-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'kurso-test.db')}"
os.environ["IDENTITY_PROVIDER"] = "fake"
os.environ["AUTH_DEV_BYPASS"] = "true"
os.environ["AUTH_JWT_SECRET"] = "kurso-test-secret-with-enough-entropy-0123456789"
os.environ.pop("SCHEDULER_SERVICE_TOKEN", None)

import pytest

from kurso.core.config import get_settings
from kurso.domain.models import Base
from kurso.persistence.db import engine
from kurso.services import subscriptions as subscriptions_module


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Tests that monkeypatch env vars must not leak cached settings into the next test.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def disable_redis_lock(monkeypatch) -> None:
    # Use the in-process sweep lock unless a test installs its own fake Redis.
    async def _no_redis():
        return None

    monkeypatch.setattr(subscriptions_module, "get_resilience_redis", _no_redis)


@pytest.fixture(autouse=True)
async def prepare_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
