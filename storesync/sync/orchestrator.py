"""
Sync orchestrator for supplier to retailer connections.

Every mutating workflow follows the same order: usage check, catalog read,
diff/pricing, mapping write, health update.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..db import (
    CatalogItem,
    ConflictMode,
    Connection,
    ConnectionStatus,
    ImportPreferences,
    MappingStatus,
    OrderEventKind,
    ProductMapping,
    Shop,
    SQLiteDatabase,
    VariantMapping,
)
from ..health import (
    ActivityEntry,
    ActivityType,
    ConnectionHealth,
    HealthTracker,
    JobEvent,
    MappingErrorType,
    ResourceType,
    SyncKind,
)
from ..mapping import (
    MappingStore,
    MatchConfidence,
    apply_markup,
    explain_markup,
    match_variant,
    resolve_markup,
    score_options,
    should_update_price,
)
from ..mapping.variants import VariantMatch
from ..shopify.client import ShopifyClientError
from ..shopify.platform import NewItem, OrderLine, PriceUpdate
from ..usage import Feature, UsageCheckResult, UsageLedger, UsageReport, UsageResource, evaluate
from .interfaces import PlatformFactory, StorePlatform
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

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_CHARS = 100


class SyncError(Exception):
    """Connection-level failure that aborts a whole workflow."""
    pass


class ConnectionNotFoundError(SyncError):
    pass


class ConnectionNotActiveError(SyncError):
    pass


class MappingNotFoundError(SyncError):
    pass


class MappingNotMaterializedError(SyncError):
    pass


class SyncOrchestrator:
    """
    Coordinates preview, import, variant matching, promotion and sync runs.

    Args:
        db: Persistence
        mappings: Mapping state machine
        ledger: Usage enforcement
        health: Health tracker
        platform_factory: Builds a store adapter for a shop
        concurrency: Items processed in parallel within one batch
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        mappings: MappingStore,
        ledger: UsageLedger,
        health: HealthTracker,
        platform_factory: PlatformFactory,
        *,
        concurrency: int = 5,
    ):
        self.db = db
        self.mappings = mappings
        self.ledger = ledger
        self.health = health
        self.platform_factory = platform_factory
        self.concurrency = concurrency

    # ===== Lookups =====

    async def _get_connection(self, connection_id: str, require_active: bool = True) -> Connection:
        connection = await self.db.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        if require_active and connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActiveError(
                f"Connection {connection_id} is {connection.status.value}"
            )
        return connection

    async def _get_mapping(self, mapping_id: str) -> ProductMapping:
        mapping = await self.mappings.get(mapping_id)
        if mapping is None:
            raise MappingNotFoundError(f"Mapping {mapping_id} not found")
        return mapping

    async def _get_shop(self, shop_id: str) -> Shop:
        shop = await self.db.get_shop(shop_id)
        if shop is None:
            raise SyncError(f"Shop {shop_id} not found")
        return shop

    async def _open(self, shop_id: str, connection_id: str) -> StorePlatform:
        shop = await self._get_shop(shop_id)

        async def on_rate_limit(delay: float) -> None:
            await self.health.record_rate_limit(connection_id, delay)

        return self.platform_factory(shop, on_rate_limit)

    async def _gate_preferences(
        self, shop_id: str, prefs: ImportPreferences, defaults_apply: bool = True
    ) -> Tuple[ImportPreferences, List[str]]:
        """Turn off field syncs the shop's tier does not include."""
        updates = {}
        restrictions = []

        wants_pricing = prefs.sync_pricing is True or (defaults_apply and prefs.sync_pricing is None)
        if wants_pricing:
            check = await self.ledger.check_feature(shop_id, Feature.PRICE_SYNC)
            if not check.allowed:
                updates["sync_pricing"] = False
                restrictions.append(check.reason)

        if prefs.sync_seo is True:
            check = await self.ledger.check_feature(shop_id, Feature.ADVANCED_FIELDS)
            if not check.allowed:
                updates["sync_seo"] = False
                restrictions.append(check.reason)

        if updates:
            prefs = prefs.model_copy(update=updates)
        return prefs, restrictions

    # ===== Import =====

    async def preview_import(
        self,
        connection_id: str,
        item_ids: List[str],
        prefs: Optional[ImportPreferences] = None,
    ) -> PreviewResult:
        """Field-level preview of an import. Writes nothing."""
        connection = await self._get_connection(connection_id, require_active=False)
        supplier_id = connection.supplier_shop_id
        item_ids = list(dict.fromkeys(item_ids))
        logger.info(f"Previewing import of {len(item_ids)} items for connection {connection_id}")

        prefs, restrictions = await self._gate_preferences(supplier_id, prefs or ImportPreferences())
        fields = prefs.sync_fields()
        tier = await self.ledger.get_shop_tier(supplier_id)
        baseline = await self.ledger.current_usage(supplier_id, UsageResource.PRODUCTS)

        source = await self._open(supplier_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id)
        try:
            items = {item.id: item for item in await source.get_items(item_ids)}

            summary = PreviewSummary(
                plan_limit=evaluate(0, UsageResource.PRODUCTS, tier).limit,
                current_count=baseline,
                fields_to_sync=fields,
                feature_restrictions=restrictions,
            )
            previews = []
            new_count = 0

            for item_id in item_ids:
                item = items.get(item_id)
                if item is None:
                    logger.warning(f"Supplier item {item_id} not found, skipping")
                    summary.missing += 1
                    continue

                existing = await self.mappings.get_for_item(connection.id, item_id)
                markup = resolve_markup(prefs, existing)
                retail_price = apply_markup(item.price, markup)

                retailer_price = None
                if existing is not None and existing.retailer_variant_id:
                    variant = await target.fetch_variant(existing.retailer_variant_id)
                    retailer_price = variant.price if variant else None

                would_exceed = False
                if existing is None:
                    would_exceed = not evaluate(baseline + new_count, UsageResource.PRODUCTS, tier).allowed
                    new_count += 1

                previews.append(ItemPreview(
                    supplier_item_id=item.id,
                    title=item.title or "Untitled",
                    wholesale_price=item.price,
                    retail_price=retail_price,
                    markup_explanation=explain_markup(markup),
                    image_url=item.image_url,
                    sku=item.sku,
                    already_imported=existing is not None,
                    diffs=self._build_diffs(item, fields, retail_price, retailer_price, restrictions),
                    would_exceed_limit=would_exceed,
                ))
        finally:
            await source.close()
            await target.close()

        summary.total_items = len(previews)
        summary.new_imports = sum(1 for p in previews if not p.already_imported)
        summary.updates = sum(1 for p in previews if p.already_imported)
        summary.would_exceed_limit = sum(1 for p in previews if p.would_exceed_limit)

        logger.info(
            f"Preview complete: {summary.new_imports} new, {summary.updates} updates, "
            f"{summary.would_exceed_limit} exceed limit"
        )
        return PreviewResult(previews=previews, summary=summary)

    @staticmethod
    def _build_diffs(
        item: CatalogItem,
        fields,
        retail_price: Optional[str],
        retailer_price: Optional[str],
        restrictions: List[str],
    ) -> List[FieldDiff]:
        description = item.description or ""
        if len(description) > DESCRIPTION_PREVIEW_CHARS:
            description = description[:DESCRIPTION_PREVIEW_CHARS] + "..."

        pricing_reason = next((r for r in restrictions if Feature.PRICE_SYNC.value in r), None)
        seo_reason = next((r for r in restrictions if Feature.ADVANCED_FIELDS.value in r), None)

        return [
            FieldDiff(field="title", supplier_value=item.title, will_sync=fields.title),
            FieldDiff(field="description", supplier_value=description or None, will_sync=fields.description),
            FieldDiff(
                field="images",
                supplier_value="1 image" if item.image_url else "No images",
                will_sync=fields.images,
            ),
            FieldDiff(
                field="price",
                supplier_value=item.price,
                retailer_value=retailer_price or retail_price,
                will_sync=fields.pricing,
                reason=pricing_reason,
            ),
            FieldDiff(
                field="inventory",
                supplier_value=f"{item.inventory_quantity} units",
                will_sync=fields.inventory,
            ),
            FieldDiff(field="tags", supplier_value=", ".join(item.tags) or None, will_sync=fields.tags),
            FieldDiff(field="seo", supplier_value=item.title, will_sync=fields.seo, reason=seo_reason),
        ]

    async def import_items(
        self,
        connection_id: str,
        item_ids: List[str],
        prefs: Optional[ImportPreferences] = None,
        materialize: bool = True,
    ) -> ImportResult:
        """
        Create (or refresh) mappings for supplier items.

        New mappings reserve a product slot before anything is written. With
        materialize, shadow mappings are also created in the retailer store.
        Items succeed or fail independently.
        """
        connection = await self._get_connection(connection_id)
        supplier_id = connection.supplier_shop_id
        item_ids = list(dict.fromkeys(item_ids))
        logger.info(f"Importing {len(item_ids)} items for connection {connection_id}")

        prefs, restrictions = await self._gate_preferences(supplier_id, prefs or ImportPreferences())
        tier = await self.ledger.get_shop_tier(supplier_id)
        baseline = await self.ledger.current_usage(supplier_id, UsageResource.PRODUCTS)

        reserve_lock = asyncio.Lock()
        reserved = 0

        async def reserve_slot() -> UsageCheckResult:
            nonlocal reserved
            async with reserve_lock:
                check = evaluate(baseline + reserved, UsageResource.PRODUCTS, tier)
                if check.allowed:
                    reserved += 1
                return check

        source = await self._open(supplier_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id) if materialize else None
        semaphore = asyncio.Semaphore(self.concurrency)

        async def import_one(item_id: str, item: Optional[CatalogItem]) -> ItemResult:
            async with semaphore:
                if item is None:
                    return ItemResult(supplier_item_id=item_id, success=False, error=f"Item {item_id} not found")

                existing = await self.mappings.get_for_item(connection.id, item_id)
                if existing is not None and existing.status.is_terminal:
                    return ItemResult(
                        supplier_item_id=item_id,
                        success=False,
                        mapping_id=existing.id,
                        error=f"Mapping {existing.id} is {existing.status.value}",
                    )

                if existing is None:
                    check = await reserve_slot()
                    if not check.allowed:
                        return ItemResult(
                            supplier_item_id=item_id,
                            success=False,
                            error=check.reason,
                            suggested_tier=check.suggested_tier,
                        )

                default_variant = item.default_variant
                mapping, created = await self.mappings.upsert_mapping(
                    connection.id,
                    item_id,
                    prefs,
                    supplier_variant_id=default_variant.id if default_variant else None,
                )

                if target is None or not mapping.is_shadow or mapping.status == MappingStatus.PAUSED:
                    return ItemResult(
                        supplier_item_id=item_id,
                        success=True,
                        skipped=not created and target is None,
                        mapping_id=mapping.id,
                        retailer_item_id=mapping.retailer_item_id,
                    )

                return await self._materialize(connection, target, mapping, item)

        try:
            items = {item.id: item for item in await source.get_items(item_ids)}
            results = await asyncio.gather(
                *(import_one(item_id, items.get(item_id)) for item_id in item_ids)
            )
        finally:
            await source.close()
            if target is not None:
                await target.close()

        summary = BatchSummary.from_results(list(results), restrictions)
        logger.info(
            f"Import complete: {summary.success} success, {summary.errors} errors, "
            f"{summary.skipped} skipped"
        )
        return ImportResult(results=list(results), summary=summary)

    async def _materialize(
        self,
        connection: Connection,
        target: StorePlatform,
        mapping: ProductMapping,
        item: CatalogItem,
    ) -> ItemResult:
        fields = mapping.sync_fields
        new_item = NewItem(
            title=item.title,
            description=item.description if fields.description else None,
            image_url=item.image_url if fields.images else None,
            tags=item.tags if fields.tags else [],
            price=apply_markup(item.price, mapping.markup),
            sku=item.sku,
            seo_title=item.title if fields.seo else None,
            seo_description=item.description if fields.seo else None,
        )

        try:
            created = await target.create_item(new_item)
        except ShopifyClientError as e:
            logger.error(f"Failed to materialize {item.id} for connection {connection.id}: {e}")
            await self.mappings.mark_materialization_failed(mapping, str(e))
            await self.health.record_sync(
                connection.id, SyncKind.CATALOG, False, error=str(e), resource_id=mapping.id
            )
            return ItemResult(
                supplier_item_id=item.id, success=False, mapping_id=mapping.id, error=str(e)
            )

        mapping = await self.mappings.mark_materialized(
            mapping, created.item_id, created.variant_id, supplier_sku=item.sku
        )
        await self.health.record_sync(connection.id, SyncKind.CATALOG, True, resource_id=mapping.id)
        return ItemResult(
            supplier_item_id=item.id,
            success=True,
            mapping_id=mapping.id,
            retailer_item_id=mapping.retailer_item_id,
        )

    async def promote_shadow_imports(self, connection_id: str, mapping_ids: List[str]) -> PromotionResult:
        """Materialize shadow mappings in the retailer store using their stored preferences."""
        connection = await self._get_connection(connection_id)
        logger.info(f"Promoting {len(mapping_ids)} shadow imports for connection {connection_id}")

        result = PromotionResult()
        shadows: List[ProductMapping] = []

        for mapping_id in mapping_ids:
            mapping = await self.mappings.get(mapping_id)
            if mapping is None or mapping.connection_id != connection.id:
                result.failed += 1
                result.errors.append(f"Mapping {mapping_id} not found")
                continue
            if not mapping.is_shadow:
                result.success += 1
                result.results.append(ItemResult(
                    supplier_item_id=mapping.supplier_item_id,
                    success=True,
                    skipped=True,
                    mapping_id=mapping.id,
                    retailer_item_id=mapping.retailer_item_id,
                ))
                continue
            shadows.append(mapping)

        if shadows:
            source = await self._open(connection.supplier_shop_id, connection.id)
            target = await self._open(connection.retailer_shop_id, connection.id)
            try:
                items = {
                    item.id: item
                    for item in await source.get_items([m.supplier_item_id for m in shadows])
                }
                for mapping in shadows:
                    item = items.get(mapping.supplier_item_id)
                    if item is None:
                        outcome = ItemResult(
                            supplier_item_id=mapping.supplier_item_id,
                            success=False,
                            mapping_id=mapping.id,
                            error=f"Item {mapping.supplier_item_id} not found",
                        )
                    elif mapping.status == MappingStatus.PAUSED:
                        outcome = ItemResult(
                            supplier_item_id=mapping.supplier_item_id,
                            success=False,
                            mapping_id=mapping.id,
                            error=f"Mapping {mapping.id} is PAUSED",
                        )
                    else:
                        outcome = await self._materialize(connection, target, mapping, item)

                    result.results.append(outcome)
                    if outcome.success:
                        result.success += 1
                    else:
                        result.failed += 1
                        result.errors.append(f"{item.title if item else mapping.supplier_item_id}: {outcome.error}")
            finally:
                await source.close()
                await target.close()

        logger.info(f"Shadow import promotion complete: {result.success} success, {result.failed} failed")
        return result

    async def update_mapping_preferences(self, mapping_ids: List[str], prefs: ImportPreferences) -> int:
        """Apply the provided preference fields to several mappings. Returns how many changed."""
        updated = 0
        for mapping_id in mapping_ids:
            mapping = await self.mappings.get(mapping_id)
            if mapping is None:
                logger.warning(f"Mapping {mapping_id} not found, skipping preference update")
                continue
            connection = await self._get_connection(mapping.connection_id, require_active=False)
            gated, _ = await self._gate_preferences(
                connection.supplier_shop_id, prefs, defaults_apply=False
            )
            await self.mappings.update_preferences(mapping, gated)
            updated += 1

        logger.info(f"Updated preferences on {updated} mappings")
        return updated

    # ===== Variants =====

    async def auto_match_variants(self, mapping_id: str) -> List[VariantMatchResult]:
        """
        Match supplier variants to retailer variants by options.

        Exact matches are stored. Manual links are kept and reported as such.
        Anything else is flagged for manual mapping.
        """
        mapping = await self._get_mapping(mapping_id)
        if mapping.is_shadow:
            raise MappingNotMaterializedError(f"Mapping {mapping_id} has no retailer item yet")
        connection = await self._get_connection(mapping.connection_id)

        source = await self._open(connection.supplier_shop_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id)
        try:
            supplier_variants = await source.fetch_variants(mapping.supplier_item_id)
            retailer_variants = await target.fetch_variants(mapping.retailer_item_id)
        finally:
            await source.close()
            await target.close()

        existing = {
            vm.supplier_variant_id: vm
            for vm in await self.mappings.get_variant_mappings(mapping.id)
        }
        retailer_by_id = {v.id: v for v in retailer_variants}

        results = []
        for variant in supplier_variants:
            manual = existing.get(variant.id)
            if manual is not None and manual.manually_mapped:
                linked = retailer_by_id.get(manual.retailer_variant_id)
                match = VariantMatch(
                    supplier_variant_id=variant.id,
                    retailer_variant_id=manual.retailer_variant_id,
                    confidence=score_options(variant.options, linked.options) if linked else MatchConfidence.NONE,
                    supplier_options=list(variant.options),
                    retailer_options=list(linked.options) if linked else manual.retailer_options,
                    manually_mapped=True,
                )
            else:
                match = match_variant(variant, retailer_variants)
                if match.confidence == MatchConfidence.EXACT:
                    await self.mappings.upsert_auto_variant(mapping.id, match)
                else:
                    await self.health.record_mapping_error(
                        connection.id,
                        mapping.id,
                        MappingErrorType.VARIANT_MISMATCH,
                        f"Variant {variant.id} needs manual mapping ({match.confidence.value} match)",
                    )

            results.append(VariantMatchResult(
                supplier_variant_id=match.supplier_variant_id,
                retailer_variant_id=match.retailer_variant_id,
                confidence=match.confidence,
                requires_manual_mapping=match.requires_manual_mapping,
                manually_mapped=match.manually_mapped,
            ))

        exact = sum(1 for r in results if r.confidence == MatchConfidence.EXACT)
        logger.info(f"Variant matching for {mapping_id}: {exact}/{len(results)} exact")
        return results

    async def manually_map_variant(
        self, mapping_id: str, supplier_variant_id: str, retailer_variant_id: str
    ) -> VariantMapping:
        """Link two variants by hand. Sticky until cleared."""
        mapping = await self._get_mapping(mapping_id)
        connection = await self._get_connection(mapping.connection_id, require_active=False)

        source = await self._open(connection.supplier_shop_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id)
        try:
            supplier_variant = next(
                (v for v in await source.fetch_variants(mapping.supplier_item_id) if v.id == supplier_variant_id),
                None,
            )
            retailer_variant = await target.fetch_variant(retailer_variant_id)
        finally:
            await source.close()
            await target.close()

        return await self.mappings.set_manual_variant(
            mapping.id,
            supplier_variant_id,
            retailer_variant_id,
            supplier_options=supplier_variant.options if supplier_variant else None,
            retailer_options=retailer_variant.options if retailer_variant else None,
        )

    async def clear_manual_variant(self, mapping_id: str, supplier_variant_id: str) -> bool:
        mapping = await self._get_mapping(mapping_id)
        return await self.mappings.clear_manual_variant(mapping.id, supplier_variant_id)

    async def _variant_pairs(
        self, mapping: ProductMapping, item: CatalogItem
    ) -> List[Tuple[str, str]]:
        """(supplier variant, retailer variant) pairs to sync for a mapping."""
        pairs = [
            (vm.supplier_variant_id, vm.retailer_variant_id)
            for vm in await self.mappings.get_variant_mappings(mapping.id)
            if vm.retailer_variant_id
        ]
        if not pairs and mapping.retailer_variant_id:
            supplier_variant_id = mapping.supplier_variant_id or (
                item.default_variant.id if item.default_variant else None
            )
            if supplier_variant_id:
                pairs.append((supplier_variant_id, mapping.retailer_variant_id))
        return pairs

    # ===== Sync runs =====

    async def sync_inventory(self, connection_id: str, location_id: Optional[str] = None) -> SyncRunSummary:
        """
        Copy supplier stock levels onto mapped retailer variants.

        A non-primary location requires the multi_location feature, otherwise
        the primary location is used.
        """
        connection = await self._get_connection(connection_id)
        summary = SyncRunSummary(connection_id=connection.id)

        active = [
            m for m in await self.mappings.list(connection.id, [MappingStatus.ACTIVE])
            if m.sync_fields.inventory and not m.is_shadow
        ]

        source = await self._open(connection.supplier_shop_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id)
        try:
            primary = await target.primary_location_id()
            if location_id and location_id != primary:
                check = await self.ledger.check_feature(connection.supplier_shop_id, Feature.MULTI_LOCATION)
                if not check.allowed:
                    summary.feature_restrictions.append(check.reason)
                    location_id = primary
            location_id = location_id or primary
            if location_id is None:
                raise SyncError(f"No inventory location for connection {connection_id}")

            items = {
                item.id: item
                for item in await source.get_items([m.supplier_item_id for m in active])
            }
            semaphore = asyncio.Semaphore(self.concurrency)

            async def sync_one(mapping: ProductMapping) -> MappingSyncResult:
                async with semaphore:
                    item = items.get(mapping.supplier_item_id)
                    if item is None:
                        return await self._mapping_failed(
                            connection, mapping, SyncKind.INVENTORY,
                            f"Supplier item {mapping.supplier_item_id} not found",
                        )

                    quantities = {v.id: v.inventory_quantity for v in item.variants}
                    pairs = await self._variant_pairs(mapping, item)
                    if not pairs:
                        return MappingSyncResult(mapping_id=mapping.id, success=True, skipped=True)

                    try:
                        for supplier_variant_id, retailer_variant_id in pairs:
                            await target.set_inventory(
                                retailer_variant_id, location_id, quantities.get(supplier_variant_id, 0)
                            )
                    except ShopifyClientError as e:
                        return await self._mapping_failed(connection, mapping, SyncKind.INVENTORY, str(e))

                    await self.mappings.record_sync_result(mapping, True)
                    await self.health.record_sync(
                        connection.id, SyncKind.INVENTORY, True, resource_id=mapping.id
                    )
                    return MappingSyncResult(mapping_id=mapping.id, success=True, updated=len(pairs))

            summary.results = list(await asyncio.gather(*(sync_one(m) for m in active)))
        finally:
            await source.close()
            await target.close()

        summary.tally()
        logger.info(
            f"Inventory sync for {connection_id}: {summary.success} synced, "
            f"{summary.errors} failed, {summary.skipped} skipped"
        )
        return summary

    async def _mapping_failed(
        self, connection: Connection, mapping: ProductMapping, kind: SyncKind, error: str
    ) -> MappingSyncResult:
        await self.mappings.record_sync_result(mapping, False, error)
        await self.health.record_sync(connection.id, kind, False, error=error, resource_id=mapping.id)
        return MappingSyncResult(mapping_id=mapping.id, success=False, error=error)

    async def sync_prices(self, connection_id: str) -> SyncRunSummary:
        """
        Push marked-up supplier prices to retailer variants.

        Conflict mode decides what happens when the retailer price differs:
        SUPPLIER_WINS overwrites, RETAILER_WINS keeps it, REVIEW_QUEUE flags it.
        """
        connection = await self._get_connection(connection_id)
        summary = SyncRunSummary(connection_id=connection.id)

        check = await self.ledger.check_feature(connection.supplier_shop_id, Feature.PRICE_SYNC)
        if not check.allowed:
            summary.feature_restrictions.append(check.reason)
            return summary

        active = [
            m for m in await self.mappings.list(connection.id, [MappingStatus.ACTIVE])
            if m.sync_fields.pricing and not m.is_shadow
        ]

        source = await self._open(connection.supplier_shop_id, connection.id)
        target = await self._open(connection.retailer_shop_id, connection.id)
        try:
            items = {
                item.id: item
                for item in await source.get_items([m.supplier_item_id for m in active])
            }

            updates: List[PriceUpdate] = []
            pending: Dict[str, ProductMapping] = {}
            results: Dict[str, MappingSyncResult] = {}

            for mapping in active:
                item = items.get(mapping.supplier_item_id)
                if item is None:
                    results[mapping.id] = await self._mapping_failed(
                        connection, mapping, SyncKind.CATALOG,
                        f"Supplier item {mapping.supplier_item_id} not found",
                    )
                    continue

                try:
                    retailer_variants = await target.fetch_variants(mapping.retailer_item_id)
                except ShopifyClientError as e:
                    results[mapping.id] = await self._mapping_failed(
                        connection, mapping, SyncKind.CATALOG, str(e)
                    )
                    continue

                supplier_prices = {v.id: v.price for v in item.variants}
                retailer_prices = {v.id: v.price for v in retailer_variants}

                changes = []
                for supplier_variant_id, retailer_variant_id in await self._variant_pairs(mapping, item):
                    new_price = apply_markup(supplier_prices.get(supplier_variant_id), mapping.markup)
                    current = retailer_prices.get(retailer_variant_id)
                    if new_price is None or not should_update_price(current, new_price):
                        continue
                    changes.append((retailer_variant_id, current, new_price))

                if not changes or mapping.conflict_mode == ConflictMode.RETAILER_WINS:
                    results[mapping.id] = MappingSyncResult(mapping_id=mapping.id, success=True, skipped=True)
                    continue

                if mapping.conflict_mode == ConflictMode.REVIEW_QUEUE:
                    summary.conflicts += 1
                    await self.health.record_mapping_error(
                        connection.id,
                        mapping.id,
                        MappingErrorType.CONFLICT,
                        "Price differs from supplier: "
                        + ", ".join(f"{rv} {cur} -> {new}" for rv, cur, new in changes),
                    )
                    results[mapping.id] = MappingSyncResult(mapping_id=mapping.id, success=True, skipped=True)
                    continue

                for retailer_variant_id, _, new_price in changes:
                    updates.append(PriceUpdate(
                        product_id=mapping.retailer_item_id,
                        variant_id=retailer_variant_id,
                        price=new_price,
                    ))
                pending[mapping.id] = mapping
                results[mapping.id] = MappingSyncResult(
                    mapping_id=mapping.id, success=True, updated=len(changes)
                )

            if updates:
                try:
                    outcome = await target.update_variant_prices(updates)
                except ShopifyClientError as e:
                    for mapping in pending.values():
                        results[mapping.id] = await self._mapping_failed(
                            connection, mapping, SyncKind.CATALOG, str(e)
                        )
                else:
                    for mapping in pending.values():
                        error = outcome.errors_by_product.get(mapping.retailer_item_id)
                        if error:
                            results[mapping.id] = await self._mapping_failed(
                                connection, mapping, SyncKind.CATALOG, error
                            )
                        else:
                            await self.mappings.record_sync_result(mapping, True)
                            await self.health.record_sync(
                                connection.id, SyncKind.CATALOG, True, resource_id=mapping.id
                            )
        finally:
            await source.close()
            await target.close()

        summary.results = [results[m.id] for m in active if m.id in results]
        summary.tally()
        logger.info(
            f"Price sync for {connection_id}: {summary.updated} variants updated, "
            f"{summary.conflicts} conflicts, {summary.errors} failed"
        )
        return summary

    async def detect_sku_drift(self, connection_id: str) -> DriftReport:
        """
        Compare current supplier SKUs with the SKU recorded at import time.

        Reads the whole catalog through a bulk export. Store and bulk failures propagate
        after the job is recorded as failed.
        """
        connection = await self._get_connection(connection_id)
        report = DriftReport(connection_id=connection.id)

        by_item = {
            m.supplier_item_id: m
            for m in await self.mappings.list(connection.id, [MappingStatus.ACTIVE, MappingStatus.PAUSED])
            if m.original_supplier_sku
        }
        if not by_item:
            return report

        source = await self._open(connection.supplier_shop_id, connection.id)
        await self.health.record_job(connection.id, JobEvent.STARTED)
        try:
            async for item in source.stream_catalog():
                mapping = by_item.get(item.id)
                if mapping is None:
                    continue
                report.checked += 1
                if item.sku != mapping.original_supplier_sku and not mapping.sku_drift_detected:
                    await self.mappings.flag_sku_drift(mapping)
                    await self.health.record_mapping_error(
                        connection.id,
                        mapping.id,
                        MappingErrorType.SKU_DRIFT,
                        f"SKU changed from {mapping.original_supplier_sku} to {item.sku}",
                    )
                    report.drifted.append(mapping.id)
        except ShopifyClientError as e:
            await self.health.record_job(connection.id, JobEvent.FAILED, error=str(e))
            raise
        else:
            await self.health.record_job(connection.id, JobEvent.FINISHED)
        finally:
            await source.close()

        logger.info(
            f"SKU drift check for {connection_id}: {len(report.drifted)} drifted "
            f"of {report.checked} checked"
        )
        return report

    # ===== Orders =====

    async def record_order(self, connection_id: str, order_ref: str) -> OrderResult:
        """Count an incoming retailer order against the supplier's monthly cap."""
        connection = await self._get_connection(connection_id)
        check = await self.ledger.check_usage(connection.supplier_shop_id, UsageResource.ORDERS)
        if not check.allowed:
            return OrderResult(
                order_ref=order_ref, accepted=False,
                reason=check.reason, suggested_tier=check.suggested_tier,
            )

        await self.db.record_order_event(
            connection.supplier_shop_id, OrderEventKind.ORDER, order_ref, connection_id=connection.id
        )
        await self.health.log_activity(
            connection.id, ActivityType.ORDER_PENDING, ResourceType.ORDER,
            f"Order {order_ref} received", resource_id=order_ref,
        )
        return OrderResult(order_ref=order_ref, accepted=True)

    async def push_order(
        self,
        connection_id: str,
        order_ref: str,
        lines: List[OrderLine],
        automatic: bool = False,
    ) -> OrderResult:
        """
        Forward a retailer order to the supplier as a draft order.

        Lines reference retailer variants and are translated through the
        variant mappings. Automatic pushes need the auto_order_push feature.
        """
        connection = await self._get_connection(connection_id)
        supplier_id = connection.supplier_shop_id

        if automatic:
            feature = await self.ledger.check_feature(supplier_id, Feature.AUTO_ORDER_PUSH)
            if not feature.allowed:
                return OrderResult(
                    order_ref=order_ref, accepted=False,
                    reason=feature.reason, suggested_tier=feature.required_tier,
                )

        check = await self.ledger.check_usage(supplier_id, UsageResource.ORDER_PUSHES)
        if not check.allowed:
            return OrderResult(
                order_ref=order_ref, accepted=False,
                reason=check.reason, suggested_tier=check.suggested_tier,
            )

        supplier_lines = []
        for line in lines:
            supplier_variant_id = await self._supplier_variant_for(connection.id, line.variant_id)
            if supplier_variant_id is None:
                return await self._push_failed(
                    connection, order_ref, f"Variant {line.variant_id} is not mapped"
                )
            supplier_lines.append(OrderLine(variant_id=supplier_variant_id, quantity=line.quantity))

        source = await self._open(supplier_id, connection.id)
        try:
            draft = await source.create_draft_order(supplier_lines, note=f"Wholesale order {order_ref}")
        except ShopifyClientError as e:
            await self.health.record_sync(connection.id, SyncKind.ORDER_FORWARD, False, error=str(e))
            return await self._push_failed(connection, order_ref, str(e))
        finally:
            await source.close()

        await self.db.record_order_event(
            supplier_id, OrderEventKind.ORDER_PUSH, order_ref, connection_id=connection.id
        )
        await self.health.record_sync(
            connection.id, SyncKind.ORDER_FORWARD, True, resource_id=draft.id
        )
        await self.health.log_activity(
            connection.id, ActivityType.ORDER_PUSHED, ResourceType.ORDER,
            f"Order {order_ref} pushed as {draft.name or draft.id}",
            resource_id=order_ref, details={"draft_order_id": draft.id},
        )
        return OrderResult(order_ref=order_ref, accepted=True, draft_order_id=draft.id)

    async def _supplier_variant_for(self, connection_id: str, retailer_variant_id: str) -> Optional[str]:
        variant_mapping = await self.db.find_variant_mapping_by_retailer_variant(
            connection_id, retailer_variant_id
        )
        if variant_mapping is not None:
            return variant_mapping.supplier_variant_id
        mapping = await self.db.get_mapping_by_retailer_variant(connection_id, retailer_variant_id)
        return mapping.supplier_variant_id if mapping else None

    async def _push_failed(self, connection: Connection, order_ref: str, error: str) -> OrderResult:
        logger.warning(f"Order {order_ref} push failed on connection {connection.id}: {error}")
        await self.health.log_activity(
            connection.id, ActivityType.ORDER_PUSH_FAILED, ResourceType.ORDER,
            f"Order {order_ref} push failed: {error}",
            resource_id=order_ref, details={"error": error},
        )
        return OrderResult(order_ref=order_ref, accepted=False, reason=error)

    # ===== Connection lifecycle =====

    async def terminate_connection(self, connection_id: str) -> int:
        """Terminate a connection and pause its mappings. Irreversible."""
        connection = await self._get_connection(connection_id, require_active=False)
        if connection.status == ConnectionStatus.TERMINATED:
            return 0

        await self.db.update_connection_status(connection.id, ConnectionStatus.TERMINATED)
        paused = await self.mappings.terminate_connection(connection.id)
        await self.health.invalidate(connection.id)
        logger.info(f"Connection {connection_id} terminated, {paused} mappings paused")
        return paused

    # ===== Read-only views =====

    async def get_health(self, connection_id: str) -> ConnectionHealth:
        await self._get_connection(connection_id, require_active=False)
        return await self.health.get_health(connection_id)

    async def get_activity(self, connection_id: str, limit: int = 50) -> List[ActivityEntry]:
        await self._get_connection(connection_id, require_active=False)
        return await self.health.get_activity(connection_id, limit)

    async def check_usage(self, shop_id: str, resource: UsageResource) -> UsageCheckResult:
        return await self.ledger.check_usage(shop_id, resource)

    async def get_usage_report(self, shop_id: str) -> UsageReport:
        return await self.ledger.get_usage_report(shop_id)
