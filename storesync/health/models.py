"""
Pydantic models for connection health and the activity log.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..db.models import utcnow


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    ERROR = "ERROR"
    OFFLINE = "OFFLINE"


class SyncKind(str, Enum):
    INVENTORY = "INVENTORY"
    CATALOG = "CATALOG"
    ORDER_FORWARD = "ORDER_FORWARD"
    FULFILLMENT = "FULFILLMENT"


class JobEvent(str, Enum):
    STARTED = "STARTED"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


class ActivityType(str, Enum):
    SYNC_SUCCESS = "SYNC_SUCCESS"
    SYNC_ERROR = "SYNC_ERROR"
    ORDER_PENDING = "ORDER_PENDING"
    ORDER_PUSHED = "ORDER_PUSHED"
    ORDER_PUSH_FAILED = "ORDER_PUSH_FAILED"
    RATE_LIMIT = "RATE_LIMIT"
    MAPPING_ERROR = "MAPPING_ERROR"
    SKU_DRIFT = "SKU_DRIFT"
    JOB_STARTED = "JOB_STARTED"
    JOB_FAILED = "JOB_FAILED"


class ResourceType(str, Enum):
    PRODUCT = "PRODUCT"
    INVENTORY = "INVENTORY"
    ORDER = "ORDER"
    CONNECTION = "CONNECTION"


class MappingErrorType(str, Enum):
    SKU_DRIFT = "SKU_DRIFT"
    CONFLICT = "CONFLICT"
    UNSUPPORTED = "UNSUPPORTED"
    VARIANT_MISMATCH = "VARIANT_MISMATCH"
    VALIDATION_FAILED = "VALIDATION_FAILED"


class MappingCounts(BaseModel):
    active: int = 0
    error: int = 0  # REPLACED + UNSUPPORTED
    pending: int = 0  # PAUSED + UNSYNCED
    shadow: int = 0


class ConnectionHealth(BaseModel):
    """Cached health projection for one connection. Always recomputable."""
    connection_id: str
    status: HealthStatus = HealthStatus.HEALTHY

    last_sync_at: Optional[datetime] = None
    last_inventory_sync_at: Optional[datetime] = None
    last_catalog_sync_at: Optional[datetime] = None
    last_order_forward_at: Optional[datetime] = None

    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    error_count_24h: int = 0
    error_window_start: Optional[datetime] = None

    is_throttled: bool = False
    throttled_until: Optional[datetime] = None

    pending_jobs: int = 0
    failed_jobs: int = 0

    mappings: MappingCounts = Field(default_factory=MappingCounts)
    computed_at: datetime = Field(default_factory=utcnow)

    def throttle_active(self, now: datetime) -> bool:
        return self.is_throttled and self.throttled_until is not None and self.throttled_until > now


class ActivityEntry(BaseModel):
    id: str
    connection_id: str
    type: ActivityType
    resource_type: ResourceType
    resource_id: Optional[str] = None
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class BulkHealthSummary(BaseModel):
    """Dashboard roll-up over several connections."""
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    error: int = 0
    offline: int = 0
    connections: Dict[str, ConnectionHealth] = Field(default_factory=dict)
