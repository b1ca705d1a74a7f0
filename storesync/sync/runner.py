"""
Runner for executing scheduled syncs across connections.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..db import Connection, ConnectionStatus, SQLiteDatabase
from ..shopify.client import ShopifyClientError
from .orchestrator import SyncError, SyncOrchestrator
from .results import SyncRunSummary

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRunResult:
    """Result of one connection's scheduled run."""
    connection: Connection
    inventory: Optional[SyncRunSummary]
    prices: Optional[SyncRunSummary]
    error: Optional[str]

    @property
    def success(self) -> bool:
        return self.error is None


async def run_single_connection(
    connection: Connection,
    orchestrator: SyncOrchestrator,
    include_prices: bool = True,
) -> ConnectionRunResult:
    """Run inventory (and optionally price) sync for one connection with error handling."""
    try:
        inventory = await orchestrator.sync_inventory(connection.id)
        prices = await orchestrator.sync_prices(connection.id) if include_prices else None
        return ConnectionRunResult(connection=connection, inventory=inventory, prices=prices, error=None)
    except (SyncError, ShopifyClientError) as e:
        logger.error(f"Sync failed for connection {connection.id}: {e}")
        return ConnectionRunResult(connection=connection, inventory=None, prices=None, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error syncing connection {connection.id}")
        return ConnectionRunResult(
            connection=connection, inventory=None, prices=None, error=f"Unexpected error: {e}"
        )


async def run_all_connections(
    orchestrator: SyncOrchestrator,
    db: SQLiteDatabase,
    max_concurrent: int = 5,
    include_prices: bool = True,
) -> List[ConnectionRunResult]:
    """Run sync for all active connections in parallel."""
    connections = await db.get_connections(ConnectionStatus.ACTIVE)

    if not connections:
        logger.info("No active connections to sync")
        return []

    logger.info(f"Starting sync for {len(connections)} connections")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def sync_with_semaphore(connection: Connection) -> ConnectionRunResult:
        async with semaphore:
            return await run_single_connection(connection, orchestrator, include_prices)

    results = await asyncio.gather(*(sync_with_semaphore(c) for c in connections))

    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful

    logger.info(f"Sync completed: {successful} successful, {failed} failed")

    return list(results)
