"""
Cron job entry point for the expiry sweep.

For deployments that run the API with EXPIRY_SWEEP_ENABLED=false and
schedule the sweep as a separate service instead (e.g. every 10 minutes).

IMPORTANT: This script must exit cleanly after completion.
Open DB connections will prevent the scheduler from marking the job as finished.
"""

from __future__ import annotations

import asyncio
import sys

from contentforge.core.config import get_settings
from contentforge.core.logging import get_logger, setup_logging
from contentforge.services.container import build_services

setup_logging()
logger = get_logger("cron")
settings = get_settings()


async def main() -> int:
    """Run a single sweep pass and close the store."""
    logger.info("cron_triggered", job="sweep_expired")
    services = await build_services(settings)
    try:
        report = await services.sweeper.sweep()
        logger.info(
            "cron_completed",
            job="sweep_expired",
            scanned=report.scanned,
            expired=report.expired,
            pruned=report.pruned,
        )
        return 0
    except Exception as e:
        logger.error("cron_failed", job="sweep_expired", error=str(e))
        return 1
    finally:
        await services.aclose()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
