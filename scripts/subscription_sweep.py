from __future__ import annotations

import asyncio
import json

from kurso.core.logging import configure_logging
from kurso.domain.context import system_context
from kurso.services.subscriptions import run_subscription_sweep


async def _main() -> int:
    configure_logging()
    summary = await run_subscription_sweep(system_context("subscription_sweep_cli"))
    print(json.dumps(summary.to_dict()))
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
