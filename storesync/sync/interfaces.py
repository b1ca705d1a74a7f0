"""
Collaborator contracts consumed by the sync engine.

ShopifyPlatform implements both protocols. Tests substitute in-memory fakes.
"""

from typing import AsyncIterator, Callable, Iterable, List, Optional, Protocol

from ..db.models import CatalogItem, CatalogVariant, Shop
from ..shopify.batch_update import BatchUpdateResult
from ..shopify.bulk_operations import BulkJobClient
from ..shopify.client import RateLimitHook
from ..shopify.platform import CreatedItem, DraftOrder, NewItem, OrderLine, PriceUpdate


class CatalogSource(Protocol):
    """Read side of the supplier store."""

    async def list_eligible_items(self) -> List[CatalogItem]: ...

    async def get_items(self, item_ids: Iterable[str]) -> List[CatalogItem]: ...

    async def fetch_variants(self, item_id: str) -> List[CatalogVariant]: ...

    def stream_catalog(self) -> AsyncIterator[CatalogItem]: ...

    async def close(self) -> None: ...


class CommercePlatform(Protocol):
    """Write side of a store: items, stock, prices and draft orders."""

    bulk: BulkJobClient

    async def create_item(self, item: NewItem) -> CreatedItem: ...

    async def set_inventory(self, variant_id: str, location_id: str, quantity: int) -> None: ...

    async def fetch_variants(self, item_id: str) -> List[CatalogVariant]: ...

    async def fetch_variant(self, variant_id: str) -> Optional[CatalogVariant]: ...

    async def primary_location_id(self) -> Optional[str]: ...

    async def update_variant_prices(self, updates: List[PriceUpdate]) -> BatchUpdateResult: ...

    async def create_draft_order(self, lines: List[OrderLine], note: str = "") -> DraftOrder: ...

    async def close(self) -> None: ...


class StorePlatform(CatalogSource, CommercePlatform, Protocol):
    """A store usable in either role."""


PlatformFactory = Callable[[Shop, Optional[RateLimitHook]], StorePlatform]
