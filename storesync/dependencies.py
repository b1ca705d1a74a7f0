"""
FastAPI dependency injection.
Database, health cache and the engine services built on them.
"""

from typing import Optional

from .config import settings
from .db import SQLiteDatabase
from .health import HealthCache, HealthTracker, create_cache
from .mapping import MappingStore
from .shopify import shopify_platform_factory
from .sync import SyncOrchestrator
from .usage import UsageLedger


# Global instances (initialized on startup)
_db: Optional[SQLiteDatabase] = None
_cache: Optional[HealthCache] = None
_orchestrator: Optional[SyncOrchestrator] = None


def build_orchestrator(db: SQLiteDatabase, cache: HealthCache, platform_factory=None) -> SyncOrchestrator:
    """Wire the engine services over one database and cache."""
    health = HealthTracker(
        db,
        cache,
        health_ttl_seconds=settings.health_ttl_seconds,
        activity_max_entries=settings.activity_max_entries,
        activity_ttl_seconds=settings.activity_ttl_seconds,
        error_threshold=settings.health_error_threshold,
    )
    return SyncOrchestrator(
        db,
        MappingStore(db),
        UsageLedger(db),
        health,
        platform_factory or shopify_platform_factory,
        concurrency=settings.import_concurrency,
    )


async def init_dependencies():
    """Initialize global dependencies. Called on app startup."""
    global _db, _cache, _orchestrator

    _db = SQLiteDatabase(settings.database_path)
    await _db.initialize()

    _cache = create_cache(settings.redis_url)
    _orchestrator = build_orchestrator(_db, _cache)


async def close_dependencies():
    """Close global dependencies. Called on app shutdown."""
    global _db, _cache, _orchestrator
    if _cache:
        await _cache.close()
    if _db:
        await _db.close()
    _orchestrator = None


def get_db() -> SQLiteDatabase:
    """Get the database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized")
    return _db


def get_orchestrator() -> SyncOrchestrator:
    """Get the sync orchestrator instance."""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized")
    return _orchestrator
