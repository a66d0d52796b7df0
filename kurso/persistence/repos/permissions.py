from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.domain.models import ModuleDenyEntry


async def list_denied_modules(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.execute(
        select(ModuleDenyEntry.module)
        .where(ModuleDenyEntry.user_id == user_id)
        .order_by(ModuleDenyEntry.module)
    )
    return list(result.scalars().all())


async def has_deny_entry(session: AsyncSession, *, user_id: str, module: str) -> bool:
    result = await session.execute(
        select(ModuleDenyEntry.id)
        .where(ModuleDenyEntry.user_id == user_id, ModuleDenyEntry.module == module)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def replace_deny_entries(session: AsyncSession, *, user_id: str, modules: list[str]) -> int:
    # Full replace keeps the write idempotent; callers own the commit.
    await session.execute(delete(ModuleDenyEntry).where(ModuleDenyEntry.user_id == user_id))
    for module in modules:
        session.add(ModuleDenyEntry(id=uuid4().hex, user_id=user_id, module=module))
    await session.flush()
    return len(modules)
