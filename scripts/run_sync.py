#!/usr/bin/env python3
"""
Cron job script to run scheduled sync for all active connections.
Add to crontab: */15 * * * * cd /path/to/app && /path/to/venv/bin/python scripts/run_sync.py

This runs the sync as a standalone script, not through the web server.
Pass --no-prices to sync inventory only.
"""

import asyncio
import logging
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storesync.config import settings
from storesync.db import SQLiteDatabase
from storesync.dependencies import build_orchestrator
from storesync.health import create_cache
from storesync.sync import run_all_connections

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


async def main():
    logger.info("Starting scheduled sync...")

    db = SQLiteDatabase(settings.database_path)
    await db.initialize()
    cache = create_cache(settings.redis_url)

    try:
        orchestrator = build_orchestrator(db, cache)
        results = await run_all_connections(
            orchestrator,
            db,
            max_concurrent=settings.import_concurrency,
            include_prices="--no-prices" not in sys.argv,
        )

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful

        logger.info(f"Sync completed: {successful} successful, {failed} failed")

        if failed > 0:
            for r in results:
                if not r.success:
                    logger.error(f"  {r.connection.id}: {r.error}")
            sys.exit(1)

    finally:
        await cache.close()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
