"""
Shopify store adapter used by the sync engine.

One ShopifyPlatform wraps one store. Against the supplier store it acts as the
catalog source, against the retailer store as the commerce platform that items,
prices, stock and draft orders are written to.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from ..config import settings
from ..db.models import CatalogItem, CatalogVariant, Shop, VariantOption
from .batch_update import BatchUpdateResult, batch_update_variants, bulk_update_variants
from .bulk_operations import BulkJobClient, PollPolicy
from .client import RateLimitHook, ShopifyClient, ShopifyClientError, raise_for_user_errors
from .mutations import (
    DRAFT_ORDER_CREATE,
    INVENTORY_SET_QUANTITIES,
    PRODUCT_CREATE,
    PRODUCT_VARIANTS_BULK_UPDATE,
)
from .queries import (
    ELIGIBLE_PRODUCTS_QUERY,
    PRIMARY_LOCATION_QUERY,
    PRODUCT_VARIANTS_QUERY,
    PRODUCTS_BY_ID_QUERY,
    VARIANT_QUERY,
    build_catalog_bulk_query,
)

logger = logging.getLogger(__name__)

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"
NODES_PAGE_SIZE = 50


@dataclass
class NewItem:
    """Input for materializing a supplier item in the retailer store."""
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    price: Optional[str] = None
    sku: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None


@dataclass
class CreatedItem:
    item_id: str
    variant_id: Optional[str]


@dataclass
class PriceUpdate:
    product_id: str
    variant_id: str
    price: str


@dataclass
class OrderLine:
    variant_id: str
    quantity: int


@dataclass
class DraftOrder:
    id: str
    name: Optional[str] = None


def parse_variant(node: Dict[str, Any]) -> CatalogVariant:
    return CatalogVariant(
        id=node["id"],
        options=[
            VariantOption(name=o.get("name", ""), value=o.get("value", ""))
            for o in node.get("selectedOptions") or []
        ],
        price=node.get("price"),
        sku=node.get("sku") or None,
        inventory_quantity=int(node.get("inventoryQuantity") or 0),
    )


def parse_product(node: Dict[str, Any]) -> CatalogItem:
    variant_edges = (node.get("variants") or {}).get("edges") or []
    return CatalogItem(
        id=node["id"],
        title=node.get("title") or "",
        description=node.get("descriptionHtml"),
        image_url=(node.get("featuredImage") or {}).get("url"),
        tags=list(node.get("tags") or []),
        variants=[parse_variant(edge["node"]) for edge in variant_edges],
    )


class ShopifyPlatform:
    """Catalog reads and retailer-side writes for a single Shopify store."""

    def __init__(
        self,
        client: ShopifyClient,
        bulk: Optional[BulkJobClient] = None,
        catalog_tag: str = "",
        bulk_mutation_threshold: int = 250,
    ):
        self.client = client
        self.bulk = bulk or BulkJobClient(client)
        self.catalog_tag = catalog_tag
        self.bulk_mutation_threshold = bulk_mutation_threshold
        self._primary_location: Optional[str] = None

    async def close(self) -> None:
        await self.client.close()

    # ===== Catalog source =====

    async def list_eligible_items(self) -> List[CatalogItem]:
        search = "status:active"
        if self.catalog_tag:
            search += f" AND tag:{self.catalog_tag}"

        items: List[CatalogItem] = []
        cursor: Optional[str] = None
        while True:
            data = await self.client.execute(
                ELIGIBLE_PRODUCTS_QUERY, variables={"query": search, "cursor": cursor}
            )
            products = data.get("products") or {}
            items.extend(parse_product(edge["node"]) for edge in products.get("edges") or [])

            page_info = products.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        return items

    async def get_items(self, item_ids: Iterable[str]) -> List[CatalogItem]:
        """Fetch items by id. Unknown ids are silently absent from the result."""
        item_ids = list(item_ids)
        items: List[CatalogItem] = []
        for start in range(0, len(item_ids), NODES_PAGE_SIZE):
            chunk = item_ids[start:start + NODES_PAGE_SIZE]
            data = await self.client.execute(PRODUCTS_BY_ID_QUERY, variables={"ids": chunk})
            items.extend(parse_product(node) for node in data.get("nodes") or [] if node)
        return items

    async def fetch_variants(self, item_id: str) -> List[CatalogVariant]:
        data = await self.client.execute(PRODUCT_VARIANTS_QUERY, variables={"id": item_id})
        product = data.get("product")
        if not product:
            return []
        return [parse_variant(edge["node"]) for edge in product["variants"]["edges"]]

    async def stream_catalog(self, policy: Optional[PollPolicy] = None) -> AsyncIterator[CatalogItem]:
        """
        Export the whole eligible catalog with a bulk query.

        Bulk JSONL lists each product followed by its variants (linked through
        __parentId), so a product is yielded as soon as the next one starts.
        """
        operation = await self.bulk.run_query(
            build_catalog_bulk_query(self.catalog_tag), policy=policy
        )
        if not operation.url:
            return

        current: Optional[CatalogItem] = None
        async for obj in self.bulk.stream_results(operation.url):
            obj_id = obj.get("id", "")
            if obj_id.startswith(PRODUCT_GID_PREFIX):
                if current is not None:
                    yield current
                current = parse_product(obj)
            elif obj_id.startswith(VARIANT_GID_PREFIX):
                if current is not None and obj.get("__parentId") == current.id:
                    current.variants.append(parse_variant(obj))

        if current is not None:
            yield current

    # ===== Commerce platform =====

    async def create_item(self, item: NewItem) -> CreatedItem:
        product_input: Dict[str, Any] = {
            "title": item.title,
            "descriptionHtml": item.description or "",
            "tags": item.tags,
            "status": "ACTIVE",
        }
        if item.seo_title or item.seo_description:
            product_input["seo"] = {
                "title": item.seo_title,
                "description": item.seo_description,
            }

        media = []
        if item.image_url:
            media.append({"originalSource": item.image_url, "mediaContentType": "IMAGE"})

        data = await self.client.execute(
            PRODUCT_CREATE, variables={"product": product_input, "media": media or None}
        )
        payload = raise_for_user_errors("productCreate", data.get("productCreate"))
        product = payload.get("product")
        if not product:
            raise ShopifyClientError("productCreate returned no product")

        variant_edges = (product.get("variants") or {}).get("edges") or []
        variant_id = variant_edges[0]["node"]["id"] if variant_edges else None

        if variant_id and (item.price is not None or item.sku):
            variant_input: Dict[str, Any] = {"id": variant_id}
            if item.price is not None:
                variant_input["price"] = item.price
            if item.sku:
                variant_input["inventoryItem"] = {"sku": item.sku}
            data = await self.client.execute(
                PRODUCT_VARIANTS_BULK_UPDATE,
                variables={"productId": product["id"], "variants": [variant_input]},
            )
            raise_for_user_errors("productVariantsBulkUpdate", data.get("productVariantsBulkUpdate"))

        logger.info(f"Created {product['id']} on {self.client.shop_domain}")
        return CreatedItem(item_id=product["id"], variant_id=variant_id)

    async def fetch_variant(self, variant_id: str) -> Optional[CatalogVariant]:
        node = await self._variant_node(variant_id)
        return parse_variant(node) if node else None

    async def _variant_node(self, variant_id: str) -> Optional[Dict[str, Any]]:
        data = await self.client.execute(VARIANT_QUERY, variables={"id": variant_id})
        return data.get("productVariant")

    async def primary_location_id(self) -> Optional[str]:
        if self._primary_location is None:
            data = await self.client.execute(PRIMARY_LOCATION_QUERY)
            edges = (data.get("locations") or {}).get("edges") or []
            if edges:
                self._primary_location = edges[0]["node"]["id"]
        return self._primary_location

    async def set_inventory(self, variant_id: str, location_id: str, quantity: int) -> None:
        node = await self._variant_node(variant_id)
        if not node or not node.get("inventoryItem"):
            raise ShopifyClientError(f"Variant {variant_id} has no inventory item")

        data = await self.client.execute(
            INVENTORY_SET_QUANTITIES,
            variables={
                "input": {
                    "name": "available",
                    "reason": "correction",
                    "ignoreCompareQuantity": True,
                    "quantities": [{
                        "inventoryItemId": node["inventoryItem"]["id"],
                        "locationId": location_id,
                        "quantity": quantity,
                    }],
                }
            },
        )
        raise_for_user_errors("inventorySetQuantities", data.get("inventorySetQuantities"))

    async def update_variant_prices(self, updates: List[PriceUpdate]) -> BatchUpdateResult:
        """Push prices, switching to a staged bulk mutation for large sets."""
        updates_by_product: Dict[str, List[dict]] = defaultdict(list)
        for update in updates:
            updates_by_product[update.product_id].append(
                {"id": update.variant_id, "price": update.price}
            )

        if not updates_by_product:
            return BatchUpdateResult()

        if len(updates) > self.bulk_mutation_threshold:
            logger.info(
                f"Using bulk mutation for {len(updates)} price updates on {self.client.shop_domain}"
            )
            return await bulk_update_variants(self.bulk, dict(updates_by_product))

        return await batch_update_variants(self.client, dict(updates_by_product), delay_seconds=0.3)

    async def create_draft_order(self, lines: List[OrderLine], note: str = "") -> DraftOrder:
        data = await self.client.execute(
            DRAFT_ORDER_CREATE,
            variables={
                "input": {
                    "lineItems": [
                        {"variantId": line.variant_id, "quantity": line.quantity}
                        for line in lines
                    ],
                    "note": note,
                }
            },
        )
        payload = raise_for_user_errors("draftOrderCreate", data.get("draftOrderCreate"))
        draft = payload.get("draftOrder") or {}
        if not draft.get("id"):
            raise ShopifyClientError("draftOrderCreate returned no draft order")
        return DraftOrder(id=draft["id"], name=draft.get("name"))


def shopify_platform_factory(
    shop: Shop, on_rate_limit: Optional[RateLimitHook] = None
) -> ShopifyPlatform:
    """Build a ShopifyPlatform for a shop using application settings."""
    client = ShopifyClient(
        shop.domain,
        shop.access_token,
        api_version=settings.shopify_api_version,
        timeout=settings.request_timeout,
        on_rate_limit=on_rate_limit,
    )
    policy = PollPolicy(
        interval=settings.bulk_poll_interval,
        max_wait=settings.bulk_max_wait,
    )
    return ShopifyPlatform(
        client,
        bulk=BulkJobClient(client, policy),
        catalog_tag=settings.catalog_tag,
        bulk_mutation_threshold=settings.bulk_mutation_threshold,
    )
