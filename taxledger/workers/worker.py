from __future__ import annotations

from taxledger.core.logger import init_logging
from taxledger.workers.celery_app import celery_app


def main() -> None:
    """Convenience entrypoint for launching the recomputation worker."""
    init_logging()
    celery_app.worker_main(["worker", "--loglevel=info", "--queues=tax"])


if __name__ == "__main__":
    main()
