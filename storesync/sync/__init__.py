"""
Sync package: the orchestrator and the scheduled runner.
"""

from .interfaces import CatalogSource, CommercePlatform, PlatformFactory, StorePlatform
from .orchestrator import (
    ConnectionNotActiveError,
    ConnectionNotFoundError,
    MappingNotFoundError,
    MappingNotMaterializedError,
    SyncError,
    SyncOrchestrator,
)
from .results import (
    BatchSummary,
    DriftReport,
    FieldDiff,
    ImportResult,
    ItemPreview,
    ItemResult,
    MappingSyncResult,
    OrderResult,
    PreviewResult,
    PreviewSummary,
    PromotionResult,
    SyncRunSummary,
    VariantMatchResult,
)
from .runner import ConnectionRunResult, run_all_connections, run_single_connection

__all__ = [
    "CatalogSource",
    "CommercePlatform",
    "PlatformFactory",
    "StorePlatform",
    "ConnectionNotActiveError",
    "ConnectionNotFoundError",
    "MappingNotFoundError",
    "MappingNotMaterializedError",
    "SyncError",
    "SyncOrchestrator",
    "BatchSummary",
    "DriftReport",
    "FieldDiff",
    "ImportResult",
    "ItemPreview",
    "ItemResult",
    "MappingSyncResult",
    "OrderResult",
    "PreviewResult",
    "PreviewSummary",
    "PromotionResult",
    "SyncRunSummary",
    "VariantMatchResult",
    "ConnectionRunResult",
    "run_all_connections",
    "run_single_connection",
]
