"""
Database package - SQLite only.
"""

from .models import (
    COUNTED_MAPPING_STATUSES,
    CatalogItem,
    CatalogVariant,
    ConflictMode,
    Connection,
    ConnectionStatus,
    ImportPreferences,
    MappingStatus,
    MarkupRule,
    MarkupType,
    MetafieldConfig,
    OrderEventKind,
    PaymentTermsType,
    ProductMapping,
    Shop,
    SyncFields,
    TierLevel,
    VariantMapping,
    VariantOption,
    generate_uuid,
    utcnow,
)
from .sqlite import SQLiteDatabase

__all__ = [
    "SQLiteDatabase",
    "COUNTED_MAPPING_STATUSES",
    "CatalogItem",
    "CatalogVariant",
    "ConflictMode",
    "Connection",
    "ConnectionStatus",
    "ImportPreferences",
    "MappingStatus",
    "MarkupRule",
    "MarkupType",
    "MetafieldConfig",
    "OrderEventKind",
    "PaymentTermsType",
    "ProductMapping",
    "Shop",
    "SyncFields",
    "TierLevel",
    "VariantMapping",
    "VariantOption",
    "generate_uuid",
    "utcnow",
]
