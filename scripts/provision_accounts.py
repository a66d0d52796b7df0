from __future__ import annotations

import argparse
import asyncio
import json
import sys

from kurso.core.errors import FatalConfigError
from kurso.core.logging import configure_logging
from kurso.domain.context import system_context
from kurso.services.provisioning import provision_accounts


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create login accounts for students with an identity number")
    parser.add_argument("--tenant", default=None, help="Restrict the run to one tenant id")
    return parser


async def _run(args: argparse.Namespace) -> int:
    report = await provision_accounts(system_context("provision_accounts"), tenant_id=args.tenant)
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    # Per-student errors are reported, not fatal; a re-run retries them.
    return 0 if report.failed == 0 else 1


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except FatalConfigError as exc:
        print(f"provision_accounts aborted: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
