"""
Connection health tracking.

Turns sync outcomes, rate-limit signals and mapping errors into a per-connection
status and keeps a bounded activity trail explaining it.
"""

import asyncio
import logging
import time
import uuid
import weakref
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..db import ConnectionStatus, MappingStatus, SQLiteDatabase, utcnow
from .cache import HealthCache, activity_key, health_key
from .models import (
    ActivityEntry,
    ActivityType,
    BulkHealthSummary,
    ConnectionHealth,
    HealthStatus,
    JobEvent,
    MappingCounts,
    MappingErrorType,
    ResourceType,
    SyncKind,
)

logger = logging.getLogger(__name__)

ERROR_WINDOW = timedelta(hours=24)
ERROR_MAPPING_RATIO = 0.1
DEFAULT_ERROR_THRESHOLD = 10

RESOURCE_FOR_KIND = {
    SyncKind.INVENTORY: ResourceType.INVENTORY,
    SyncKind.CATALOG: ResourceType.PRODUCT,
    SyncKind.ORDER_FORWARD: ResourceType.ORDER,
    SyncKind.FULFILLMENT: ResourceType.ORDER,
}


def derive_status(
    connection_status: Optional[ConnectionStatus],
    recent_errors: int,
    active_mappings: int,
    error_mappings: int,
    error_threshold: int = DEFAULT_ERROR_THRESHOLD,
) -> HealthStatus:
    """
    Health status from source data alone.

    OFFLINE unless the connection is ACTIVE. ERROR when recent errors exceed
    the threshold or error mappings exceed 10% of active ones. DEGRADED when
    there is any error at all.
    """
    if connection_status != ConnectionStatus.ACTIVE:
        return HealthStatus.OFFLINE
    if recent_errors > error_threshold or error_mappings > active_mappings * ERROR_MAPPING_RATIO:
        return HealthStatus.ERROR
    if recent_errors > 0 or error_mappings > 0:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def new_activity_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class HealthTracker:
    """
    Per-connection health state over a HealthCache.

    Incremental updates for one connection run under that connection's lock so
    they apply in the order their events completed.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        cache: HealthCache,
        *,
        health_ttl_seconds: int = 300,
        activity_max_entries: int = 100,
        activity_ttl_seconds: int = 86400,
        error_threshold: int = DEFAULT_ERROR_THRESHOLD,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.cache = cache
        self.health_ttl_seconds = health_ttl_seconds
        self.activity_max_entries = activity_max_entries
        self.activity_ttl_seconds = activity_ttl_seconds
        self.error_threshold = error_threshold
        self._clock = clock or utcnow
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, connection_id: str) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = self._locks[connection_id] = asyncio.Lock()
        return lock

    # ===== Snapshots =====

    async def compute_health(self, connection_id: str) -> ConnectionHealth:
        """Rebuild health from the database and cache it."""
        now = self._clock()
        connection = await self.db.get_connection(connection_id)
        counts = await self.db.count_mappings_by_status(connection_id)
        recent_errors = await self.db.count_recent_mapping_errors(connection_id, now - ERROR_WINDOW)
        shadow = await self.db.count_shadow_mappings(connection_id)

        mappings = MappingCounts(
            active=counts[MappingStatus.ACTIVE],
            error=counts[MappingStatus.REPLACED] + counts[MappingStatus.UNSUPPORTED],
            pending=counts[MappingStatus.PAUSED] + counts[MappingStatus.UNSYNCED],
            shadow=shadow,
        )

        health = ConnectionHealth(
            connection_id=connection_id,
            status=derive_status(
                connection.status if connection else None,
                recent_errors,
                mappings.active,
                mappings.error,
                self.error_threshold,
            ),
            error_count_24h=recent_errors,
            error_window_start=now if recent_errors else None,
            mappings=mappings,
            computed_at=now,
        )
        await self._save(health)
        return health

    async def get_health(self, connection_id: str) -> ConnectionHealth:
        """Cached health, recomputed when absent or expired."""
        cached = await self._load_cached(connection_id)
        if cached is not None:
            return cached
        return await self.compute_health(connection_id)

    async def get_bulk_health(self, connection_ids: Iterable[str]) -> BulkHealthSummary:
        summary = BulkHealthSummary()
        for connection_id in connection_ids:
            health = await self.get_health(connection_id)
            summary.connections[connection_id] = health
            summary.total += 1
            if health.status == HealthStatus.HEALTHY:
                summary.healthy += 1
            elif health.status == HealthStatus.DEGRADED:
                summary.degraded += 1
            elif health.status == HealthStatus.ERROR:
                summary.error += 1
            else:
                summary.offline += 1
        return summary

    async def connections_with_errors(self, connection_ids: Iterable[str]) -> List[ConnectionHealth]:
        results = []
        for connection_id in connection_ids:
            health = await self.get_health(connection_id)
            if health.status in (HealthStatus.ERROR, HealthStatus.DEGRADED):
                results.append(health)
        return results

    async def invalidate(self, connection_id: str) -> None:
        await self.cache.delete(health_key(connection_id))

    async def _load_cached(self, connection_id: str) -> Optional[ConnectionHealth]:
        raw = await self.cache.get(health_key(connection_id))
        if not raw:
            return None
        try:
            return ConnectionHealth.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable health snapshot for {connection_id}: {e}")
            return None

    async def _save(self, health: ConnectionHealth) -> None:
        await self.cache.set(
            health_key(health.connection_id),
            health.model_dump_json(),
            self.health_ttl_seconds,
        )

    # ===== Incremental updates =====

    async def record_sync(
        self,
        connection_id: str,
        kind: SyncKind,
        success: bool,
        error: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> ConnectionHealth:
        async with self._lock(connection_id):
            health = await self.get_health(connection_id)
            now = self._clock()

            health.last_sync_at = now
            if kind == SyncKind.INVENTORY:
                health.last_inventory_sync_at = now
            elif kind == SyncKind.CATALOG:
                health.last_catalog_sync_at = now
            elif kind == SyncKind.ORDER_FORWARD:
                health.last_order_forward_at = now

            if health.error_window_start is None or now - health.error_window_start > ERROR_WINDOW:
                health.error_count_24h = 0
                health.error_window_start = now if not success else None

            if not success:
                health.last_error = error or f"{kind.value} sync failed"
                health.last_error_at = now
                health.error_count_24h += 1
                if health.error_count_24h > self.error_threshold:
                    health.status = HealthStatus.ERROR
                else:
                    health.status = HealthStatus.DEGRADED
            elif (
                health.status == HealthStatus.DEGRADED
                and health.error_count_24h <= 1
                and not health.throttle_active(now)
            ):
                health.status = HealthStatus.HEALTHY

            await self._save(health)

        if success:
            await self.log_activity(
                connection_id,
                ActivityType.SYNC_SUCCESS,
                RESOURCE_FOR_KIND[kind],
                f"{kind.value} sync completed",
                resource_id=resource_id,
                details={"kind": kind.value},
            )
        else:
            logger.warning(f"{kind.value} sync failed on connection {connection_id}: {error}")
            await self.log_activity(
                connection_id,
                ActivityType.SYNC_ERROR,
                RESOURCE_FOR_KIND[kind],
                f"{kind.value} sync failed: {error}",
                resource_id=resource_id,
                details={"error": error} if error else None,
            )
        return health

    async def record_rate_limit(self, connection_id: str, delay_seconds: float) -> ConnectionHealth:
        async with self._lock(connection_id):
            health = await self.get_health(connection_id)
            health.is_throttled = True
            health.throttled_until = self._clock() + timedelta(seconds=delay_seconds)
            health.status = HealthStatus.DEGRADED
            await self._save(health)

        await self.log_activity(
            connection_id,
            ActivityType.RATE_LIMIT,
            ResourceType.CONNECTION,
            f"Rate limited, backing off for {delay_seconds:.1f}s",
            details={"delay_seconds": delay_seconds},
        )
        return health

    async def record_mapping_error(
        self,
        connection_id: str,
        mapping_id: str,
        error_type: MappingErrorType,
        message: str,
    ) -> None:
        """Mapping errors only leave a trail. They never fail a batch."""
        activity_type = (
            ActivityType.SKU_DRIFT if error_type == MappingErrorType.SKU_DRIFT
            else ActivityType.MAPPING_ERROR
        )
        await self.log_activity(
            connection_id,
            activity_type,
            ResourceType.PRODUCT,
            message,
            resource_id=mapping_id,
            details={"error_type": error_type.value},
        )

    async def record_job(
        self,
        connection_id: str,
        event: JobEvent,
        job_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ConnectionHealth:
        async with self._lock(connection_id):
            health = await self.get_health(connection_id)
            if event == JobEvent.STARTED:
                health.pending_jobs += 1
            else:
                health.pending_jobs = max(0, health.pending_jobs - 1)
                if event == JobEvent.FAILED:
                    health.failed_jobs += 1
            await self._save(health)

        if event == JobEvent.STARTED:
            await self.log_activity(
                connection_id, ActivityType.JOB_STARTED, ResourceType.CONNECTION,
                f"Bulk job {job_id} started" if job_id else "Bulk job started",
                resource_id=job_id,
            )
        elif event == JobEvent.FAILED:
            await self.log_activity(
                connection_id, ActivityType.JOB_FAILED, ResourceType.CONNECTION,
                f"Bulk job failed: {error}",
                resource_id=job_id,
                details={"error": error} if error else None,
            )
        return health

    # ===== Activity log =====

    async def log_activity(
        self,
        connection_id: str,
        activity_type: ActivityType,
        resource_type: ResourceType,
        message: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            id=new_activity_id(),
            connection_id=connection_id,
            type=activity_type,
            resource_type=resource_type,
            resource_id=resource_id,
            message=message,
            details=details or {},
            created_at=self._clock(),
        )
        await self.cache.push_trimmed(
            activity_key(connection_id),
            entry.model_dump_json(),
            self.activity_max_entries,
            self.activity_ttl_seconds,
        )
        return entry

    async def get_activity(self, connection_id: str, limit: int = 50) -> List[ActivityEntry]:
        """Newest first, limited to entries younger than the activity TTL."""
        raw_entries = await self.cache.lrange(activity_key(connection_id), limit)
        cutoff = self._clock() - timedelta(seconds=self.activity_ttl_seconds)

        entries = []
        for raw in raw_entries:
            try:
                entry = ActivityEntry.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable activity entry: {e}")
                continue
            if entry.created_at >= cutoff:
                entries.append(entry)
        return entries
