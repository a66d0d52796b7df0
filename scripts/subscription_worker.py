from __future__ import annotations

from arq.worker import run_worker

from kurso.core.logging import configure_logging
from kurso.workers.subscription_worker import WorkerSettings


def main() -> None:
    # Long-running arq worker that fires the daily sweep cron.
    configure_logging()
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
