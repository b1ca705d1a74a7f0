"""
Shared fixtures: a temporary database, in-memory cache and fake stores.
"""

import itertools
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from storesync.db import (
    CatalogItem,
    CatalogVariant,
    Connection,
    ConnectionStatus,
    Shop,
    SQLiteDatabase,
    TierLevel,
    VariantOption,
    utcnow,
)
from storesync.health import HealthTracker, InMemoryCache
from storesync.mapping import MappingStore
from storesync.shopify import (
    BatchUpdateResult,
    CreatedItem,
    DraftOrder,
    NewItem,
    OrderLine,
    PriceUpdate,
    ShopifyUserError,
)
from storesync.sync import SyncOrchestrator
from storesync.usage import UsageLedger

PRIMARY_LOCATION = "gid://shopify/Location/1"


class Clock:
    """Settable clock shared by the tracker, ledger and cache."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def opts(**pairs: str) -> List[VariantOption]:
    return [VariantOption(name=name, value=value) for name, value in pairs.items()]


def make_item(
    item_id: str,
    price: str = "20.00",
    sku: Optional[str] = None,
    variants: Optional[List[CatalogVariant]] = None,
    **kwargs,
) -> CatalogItem:
    if variants is None:
        variants = [CatalogVariant(
            id=f"{item_id}-v1",
            price=price,
            sku=sku or f"SKU-{item_id}",
            inventory_quantity=7,
        )]
    return CatalogItem(id=item_id, title=kwargs.pop("title", f"Item {item_id}"), variants=variants, **kwargs)


class FakeStore:
    """In-memory store implementing both catalog and commerce sides."""

    _ids = itertools.count(1)

    def __init__(self, items: Iterable[CatalogItem] = ()):
        self.items: Dict[str, CatalogItem] = {item.id: item for item in items}
        self.bulk = None
        self.created: List[NewItem] = []
        self.inventory: Dict[tuple, int] = {}
        self.price_updates: List[PriceUpdate] = []
        self.draft_orders: List[List[OrderLine]] = []
        self.fail_create_for: set = set()
        self.fail_fetch_for: set = set()
        self.fail_stream: Optional[Exception] = None
        self.closed = 0

    def add(self, item: CatalogItem) -> CatalogItem:
        self.items[item.id] = item
        return item

    async def list_eligible_items(self) -> List[CatalogItem]:
        return list(self.items.values())

    async def get_items(self, item_ids: Iterable[str]) -> List[CatalogItem]:
        return [self.items[i] for i in item_ids if i in self.items]

    async def fetch_variants(self, item_id: str) -> List[CatalogVariant]:
        if item_id in self.fail_fetch_for:
            raise ShopifyUserError("product", [{"message": "Product not found"}])
        item = self.items.get(item_id)
        return list(item.variants) if item else []

    async def stream_catalog(self):
        if self.fail_stream is not None:
            raise self.fail_stream
        for item in list(self.items.values()):
            yield item

    async def create_item(self, item: NewItem) -> CreatedItem:
        if item.title in self.fail_create_for:
            raise ShopifyUserError("productCreate", [{"field": ["title"], "message": "Title is invalid"}])
        n = next(self._ids)
        item_id = f"gid://shopify/Product/r{n}"
        variant_id = f"gid://shopify/ProductVariant/r{n}"
        self.created.append(item)
        self.add(CatalogItem(
            id=item_id,
            title=item.title,
            variants=[CatalogVariant(id=variant_id, price=item.price, sku=item.sku)],
        ))
        return CreatedItem(item_id=item_id, variant_id=variant_id)

    async def fetch_variant(self, variant_id: str) -> Optional[CatalogVariant]:
        for item in self.items.values():
            for variant in item.variants:
                if variant.id == variant_id:
                    return variant
        return None

    async def primary_location_id(self) -> Optional[str]:
        return PRIMARY_LOCATION

    async def set_inventory(self, variant_id: str, location_id: str, quantity: int) -> None:
        self.inventory[(variant_id, location_id)] = quantity

    async def update_variant_prices(self, updates: List[PriceUpdate]) -> BatchUpdateResult:
        self.price_updates.extend(updates)
        for update in updates:
            variant = await self.fetch_variant(update.variant_id)
            if variant is not None:
                variant.price = update.price
        return BatchUpdateResult(success_count=len({u.product_id for u in updates}))

    async def create_draft_order(self, lines: List[OrderLine], note: str = "") -> DraftOrder:
        self.draft_orders.append(lines)
        return DraftOrder(id=f"gid://shopify/DraftOrder/{len(self.draft_orders)}", name=f"#D{len(self.draft_orders)}")

    async def close(self) -> None:
        self.closed += 1


@pytest.fixture
def clock():
    return Clock(utcnow())


@pytest_asyncio.fixture
async def db(tmp_path):
    database = SQLiteDatabase(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def cache(clock):
    return InMemoryCache(clock)


@pytest.fixture
def tracker(db, cache, clock):
    return HealthTracker(db, cache, activity_max_entries=100, clock=clock)


@pytest.fixture
def ledger(db, clock):
    return UsageLedger(db, clock)


@pytest.fixture
def mapping_store(db, clock):
    return MappingStore(db, clock=clock)


@pytest.fixture
def supplier_store():
    return FakeStore()


@pytest.fixture
def retailer_store():
    return FakeStore()


@pytest_asyncio.fixture
async def supplier(db):
    return await db.create_shop(Shop(domain="supplier.myshopify.com", access_token="shpat_s", tier=TierLevel.FREE))


@pytest_asyncio.fixture
async def retailer(db):
    return await db.create_shop(Shop(domain="retailer.myshopify.com", access_token="shpat_r"))


@pytest_asyncio.fixture
async def connection(db, supplier, retailer):
    return await db.create_connection(Connection(
        supplier_shop_id=supplier.id,
        retailer_shop_id=retailer.id,
        status=ConnectionStatus.ACTIVE,
    ))


@pytest.fixture
def orchestrator(db, mapping_store, ledger, tracker, supplier, retailer, supplier_store, retailer_store):
    stores = {supplier.id: supplier_store, retailer.id: retailer_store}

    def factory(shop, on_rate_limit=None):
        return stores[shop.id]

    return SyncOrchestrator(db, mapping_store, ledger, tracker, factory, concurrency=3)

