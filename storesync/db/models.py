"""
Pydantic models for database entities and catalog records.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


class TierLevel(str, Enum):
    """Subscription tiers, lowest first."""
    FREE = "FREE"
    STARTER = "STARTER"
    CORE = "CORE"
    PRO = "PRO"
    GROWTH = "GROWTH"
    SCALE = "SCALE"
    MARKETPLACE = "MARKETPLACE"


class ConnectionStatus(str, Enum):
    PENDING_INVITE = "PENDING_INVITE"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


class PaymentTermsType(str, Enum):
    PREPAY = "PREPAY"
    NET_15 = "NET_15"
    NET_30 = "NET_30"
    NET_60 = "NET_60"


class MappingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    UNSYNCED = "UNSYNCED"
    REPLACED = "REPLACED"
    UNSUPPORTED = "UNSUPPORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (MappingStatus.REPLACED, MappingStatus.UNSUPPORTED)


# Statuses that occupy a mapped-product slot. Used by enforcement and
# reporting alike.
COUNTED_MAPPING_STATUSES = (
    MappingStatus.ACTIVE,
    MappingStatus.PAUSED,
    MappingStatus.UNSYNCED,
)


class MarkupType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    CUSTOM = "CUSTOM"


class ConflictMode(str, Enum):
    SUPPLIER_WINS = "SUPPLIER_WINS"
    RETAILER_WINS = "RETAILER_WINS"
    REVIEW_QUEUE = "REVIEW_QUEUE"


class OrderEventKind(str, Enum):
    ORDER = "ORDER"
    ORDER_PUSH = "ORDER_PUSH"


class Shop(BaseModel):
    """A Shopify store taking part in one or more connections."""
    id: str = Field(default_factory=generate_uuid)
    domain: str  # e.g., "mystore.myshopify.com"
    access_token: str
    tier: TierLevel = TierLevel.FREE
    created_at: datetime = Field(default_factory=utcnow)


class Connection(BaseModel):
    """Supplier to retailer pairing."""
    id: str = Field(default_factory=generate_uuid)
    supplier_shop_id: str
    retailer_shop_id: str
    status: ConnectionStatus = ConnectionStatus.PENDING_INVITE
    payment_terms: PaymentTermsType = PaymentTermsType.PREPAY
    tier: TierLevel = TierLevel.FREE  # supplier tier when the invite was accepted
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncFields(BaseModel):
    """Per-mapping field toggles."""
    title: bool = True
    description: bool = True
    images: bool = True
    pricing: bool = True
    inventory: bool = True
    tags: bool = False
    seo: bool = False


class MarkupRule(BaseModel):
    type: MarkupType = MarkupType.PERCENTAGE
    value: Decimal = Decimal("50")


class ImportPreferences(BaseModel):
    """
    Caller-supplied import preferences.

    Every field is optional. An unset toggle means "sync" for title,
    description, images, pricing and inventory, and "don't sync" for tags
    and SEO.
    """
    sync_title: Optional[bool] = None
    sync_description: Optional[bool] = None
    sync_images: Optional[bool] = None
    sync_pricing: Optional[bool] = None
    sync_inventory: Optional[bool] = None
    sync_tags: Optional[bool] = None
    sync_seo: Optional[bool] = None
    markup_type: Optional[MarkupType] = None
    markup_value: Optional[Decimal] = None
    conflict_mode: Optional[ConflictMode] = None

    def sync_fields(self) -> SyncFields:
        return SyncFields(
            title=self.sync_title is not False,
            description=self.sync_description is not False,
            images=self.sync_images is not False,
            pricing=self.sync_pricing is not False,
            inventory=self.sync_inventory is not False,
            tags=self.sync_tags is True,
            seo=self.sync_seo is True,
        )


class ProductMapping(BaseModel):
    """Link between a supplier catalog item and its retailer counterpart."""
    id: str = Field(default_factory=generate_uuid)
    connection_id: str
    supplier_item_id: str
    supplier_variant_id: Optional[str] = None
    retailer_item_id: Optional[str] = None
    retailer_variant_id: Optional[str] = None
    sync_fields: SyncFields = Field(default_factory=SyncFields)
    markup: MarkupRule = Field(default_factory=MarkupRule)
    conflict_mode: ConflictMode = ConflictMode.SUPPLIER_WINS
    status: MappingStatus = MappingStatus.UNSYNCED
    original_supplier_sku: Optional[str] = None
    sku_drift_detected: bool = False
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_shadow(self) -> bool:
        """Never materialized in the retailer store."""
        return self.retailer_item_id is None


class VariantOption(BaseModel):
    name: str  # e.g., "Size"
    value: str  # e.g., "M"


class VariantMapping(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    product_mapping_id: str
    supplier_variant_id: str
    retailer_variant_id: Optional[str] = None
    supplier_options: List[VariantOption] = Field(default_factory=list)
    retailer_options: List[VariantOption] = Field(default_factory=list)
    manually_mapped: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MetafieldConfig(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    connection_id: str
    namespace: str
    key: str
    sync_enabled: bool = True


class CatalogVariant(BaseModel):
    """A variant as read from a store."""
    id: str
    options: List[VariantOption] = Field(default_factory=list)
    price: Optional[str] = None
    sku: Optional[str] = None
    inventory_quantity: int = 0


class CatalogItem(BaseModel):
    """A supplier product eligible for wholesale."""
    id: str
    title: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    variants: List[CatalogVariant] = Field(default_factory=list)

    @property
    def default_variant(self) -> Optional[CatalogVariant]:
        return self.variants[0] if self.variants else None

    @property
    def price(self) -> Optional[str]:
        variant = self.default_variant
        return variant.price if variant else None

    @property
    def sku(self) -> Optional[str]:
        variant = self.default_variant
        return variant.sku if variant else None

    @property
    def inventory_quantity(self) -> int:
        return sum(v.inventory_quantity for v in self.variants)
