"""
Health package: connection health status and activity log.
"""

from .cache import HealthCache, InMemoryCache, RedisCache, create_cache
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
from .tracker import HealthTracker, derive_status

__all__ = [
    "HealthCache",
    "InMemoryCache",
    "RedisCache",
    "create_cache",
    "ActivityEntry",
    "ActivityType",
    "BulkHealthSummary",
    "ConnectionHealth",
    "HealthStatus",
    "JobEvent",
    "MappingCounts",
    "MappingErrorType",
    "ResourceType",
    "SyncKind",
    "HealthTracker",
    "derive_status",
]
