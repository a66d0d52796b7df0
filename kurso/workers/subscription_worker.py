from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from kurso.core.config import get_settings
from kurso.core.logging import configure_logging
from kurso.domain.context import system_context
from kurso.services.subscriptions import run_subscription_sweep

logger = logging.getLogger(__name__)


async def subscription_sweep(ctx) -> dict:
    # Daily cron entry; overlapping runs are absorbed by the sweep lock.
    summary = await run_subscription_sweep(system_context("subscription_worker"))
    return summary.to_dict()


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("subscription_worker_started")


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [subscription_sweep]
    cron_jobs = [
        cron(
            subscription_sweep,
            hour=settings.subscription_sweep_cron_hour,
            minute=settings.subscription_sweep_cron_minute,
            run_at_startup=False,
            unique=True,
        )
    ]
    on_startup = _startup
