"""
Product and variant mapping state.

ProductMapping lifecycle:

    UNSYNCED -> ACTIVE -> PAUSED -> REPLACED | UNSUPPORTED

REPLACED and UNSUPPORTED are terminal. Mappings are never deleted.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ..db import (
    ConflictMode,
    ImportPreferences,
    MappingStatus,
    ProductMapping,
    SQLiteDatabase,
    VariantMapping,
    VariantOption,
    utcnow,
)
from .pricing import resolve_markup
from .variants import MatchConfidence, VariantMatch

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[MappingStatus, FrozenSet[MappingStatus]] = {
    MappingStatus.UNSYNCED: frozenset({
        MappingStatus.ACTIVE,
        MappingStatus.PAUSED,
        MappingStatus.REPLACED,
        MappingStatus.UNSUPPORTED,
    }),
    MappingStatus.ACTIVE: frozenset({
        MappingStatus.PAUSED,
        MappingStatus.REPLACED,
        MappingStatus.UNSUPPORTED,
    }),
    MappingStatus.PAUSED: frozenset({
        MappingStatus.ACTIVE,
        MappingStatus.UNSYNCED,
        MappingStatus.REPLACED,
        MappingStatus.UNSUPPORTED,
    }),
    MappingStatus.REPLACED: frozenset(),
    MappingStatus.UNSUPPORTED: frozenset(),
}

PREFERENCE_FIELDS = {
    "sync_title": "title",
    "sync_description": "description",
    "sync_images": "images",
    "sync_pricing": "pricing",
    "sync_inventory": "inventory",
    "sync_tags": "tags",
    "sync_seo": "seo",
}


class InvalidTransitionError(Exception):
    """Mapping status change not allowed by the lifecycle."""

    def __init__(self, mapping_id: str, current: MappingStatus, target: MappingStatus):
        super().__init__(
            f"Mapping {mapping_id} cannot move from {current.value} to {target.value}"
        )
        self.mapping_id = mapping_id
        self.current = current
        self.target = target


class MappingStore:
    """Mapping CRUD and the status state machine, over SQLiteDatabase."""

    def __init__(self, db: SQLiteDatabase, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._clock = clock or utcnow

    # ===== Reads =====

    async def get(self, mapping_id: str) -> Optional[ProductMapping]:
        return await self.db.get_mapping(mapping_id)

    async def get_for_item(self, connection_id: str, supplier_item_id: str) -> Optional[ProductMapping]:
        return await self.db.get_mapping_for_item(connection_id, supplier_item_id)

    async def list(
        self, connection_id: str, statuses: Optional[List[MappingStatus]] = None
    ) -> List[ProductMapping]:
        return await self.db.get_mappings(connection_id, statuses)

    async def count_by_status(self, connection_id: str) -> Dict[MappingStatus, int]:
        return await self.db.count_mappings_by_status(connection_id)

    async def count_shadow(self, connection_id: str) -> int:
        return await self.db.count_shadow_mappings(connection_id)

    # ===== Writes =====

    async def upsert_mapping(
        self,
        connection_id: str,
        supplier_item_id: str,
        prefs: Optional[ImportPreferences] = None,
        supplier_variant_id: Optional[str] = None,
    ) -> Tuple[ProductMapping, bool]:
        """
        Create the mapping for a supplier item, or refresh its preferences.

        Returns:
            (mapping, created) where created is False for a re-import
        """
        existing = await self.db.get_mapping_for_item(connection_id, supplier_item_id)
        prefs = prefs or ImportPreferences()

        if prefs.conflict_mode is not None:
            conflict_mode = prefs.conflict_mode
        elif existing is not None:
            conflict_mode = existing.conflict_mode
        else:
            conflict_mode = ConflictMode.SUPPLIER_WINS

        candidate = ProductMapping(
            connection_id=connection_id,
            supplier_item_id=supplier_item_id,
            supplier_variant_id=supplier_variant_id,
            sync_fields=prefs.sync_fields(),
            markup=resolve_markup(prefs, existing),
            conflict_mode=conflict_mode,
            status=MappingStatus.UNSYNCED,
        )
        mapping = await self.db.upsert_mapping(candidate)

        if existing is None:
            logger.debug(f"Created mapping {mapping.id} for {supplier_item_id}")
        return mapping, existing is None

    async def transition(
        self, mapping: ProductMapping, target: MappingStatus, **fields
    ) -> ProductMapping:
        """Move a mapping to a new status, validating the lifecycle."""
        if target not in ALLOWED_TRANSITIONS[mapping.status]:
            raise InvalidTransitionError(mapping.id, mapping.status, target)
        return await self.db.update_mapping(mapping.id, status=target, **fields)

    async def mark_materialized(
        self,
        mapping: ProductMapping,
        retailer_item_id: str,
        retailer_variant_id: Optional[str],
        supplier_sku: Optional[str] = None,
    ) -> ProductMapping:
        """Record the retailer-side item and activate the mapping."""
        return await self.transition(
            mapping,
            MappingStatus.ACTIVE,
            retailer_item_id=retailer_item_id,
            retailer_variant_id=retailer_variant_id,
            original_supplier_sku=supplier_sku,
            last_synced_at=self._clock(),
            last_error=None,
        )

    async def mark_materialization_failed(self, mapping: ProductMapping, error: str) -> ProductMapping:
        """Materialization failed: the mapping stays where it is with the error recorded."""
        return await self.record_error(mapping, error)

    async def record_error(self, mapping: ProductMapping, error: str) -> ProductMapping:
        return await self.db.update_mapping(
            mapping.id, last_error=error, last_error_at=self._clock()
        )

    async def record_sync_result(
        self, mapping: ProductMapping, success: bool, error: Optional[str] = None
    ) -> ProductMapping:
        if success:
            return await self.db.update_mapping(
                mapping.id, last_synced_at=self._clock(), last_error=None
            )
        return await self.record_error(mapping, error or "Sync failed")

    async def pause(self, mapping: ProductMapping) -> ProductMapping:
        return await self.transition(mapping, MappingStatus.PAUSED)

    async def resume(self, mapping: ProductMapping) -> ProductMapping:
        """Resume a paused mapping. Shadow mappings go back to UNSYNCED."""
        target = MappingStatus.UNSYNCED if mapping.is_shadow else MappingStatus.ACTIVE
        return await self.transition(mapping, target)

    async def replace(self, mapping: ProductMapping) -> ProductMapping:
        return await self.transition(mapping, MappingStatus.REPLACED)

    async def mark_unsupported(self, mapping: ProductMapping, reason: str) -> ProductMapping:
        return await self.transition(
            mapping, MappingStatus.UNSUPPORTED, last_error=reason, last_error_at=self._clock()
        )

    async def update_preferences(
        self, mapping: ProductMapping, prefs: ImportPreferences
    ) -> ProductMapping:
        """Apply only the preference fields that were actually provided."""
        provided = prefs.model_dump(exclude_unset=True, exclude_none=True)
        updates = {}

        toggles = {
            PREFERENCE_FIELDS[key]: value
            for key, value in provided.items()
            if key in PREFERENCE_FIELDS
        }
        if toggles:
            updates["sync_fields"] = mapping.sync_fields.model_copy(update=toggles)

        if "markup_type" in provided or "markup_value" in provided:
            updates["markup"] = resolve_markup(prefs, mapping)

        if "conflict_mode" in provided:
            updates["conflict_mode"] = prefs.conflict_mode

        if not updates:
            return mapping
        return await self.db.update_mapping(mapping.id, **updates)

    async def terminate_connection(self, connection_id: str) -> int:
        """Soft-disable every non-terminal mapping of a terminated connection."""
        paused = await self.db.update_mappings_status(
            connection_id,
            [MappingStatus.UNSYNCED, MappingStatus.ACTIVE],
            MappingStatus.PAUSED,
        )
        logger.info(f"Paused {paused} mappings for terminated connection {connection_id}")
        return paused

    async def flag_sku_drift(self, mapping: ProductMapping) -> ProductMapping:
        return await self.db.update_mapping(mapping.id, sku_drift_detected=True)

    # ===== Variant mappings =====

    async def get_variant_mappings(self, product_mapping_id: str) -> List[VariantMapping]:
        return await self.db.get_variant_mappings(product_mapping_id)

    async def get_variant_mapping(
        self, product_mapping_id: str, supplier_variant_id: str
    ) -> Optional[VariantMapping]:
        return await self.db.get_variant_mapping(product_mapping_id, supplier_variant_id)

    async def upsert_auto_variant(
        self, product_mapping_id: str, match: VariantMatch
    ) -> Optional[VariantMapping]:
        """
        Persist an exact auto-match.

        Manual mappings are left untouched. Non-exact matches are not stored.
        """
        if match.confidence != MatchConfidence.EXACT:
            return None

        existing = await self.db.get_variant_mapping(product_mapping_id, match.supplier_variant_id)
        if existing is not None and existing.manually_mapped:
            return existing

        return await self.db.upsert_variant_mapping(VariantMapping(
            product_mapping_id=product_mapping_id,
            supplier_variant_id=match.supplier_variant_id,
            retailer_variant_id=match.retailer_variant_id,
            supplier_options=match.supplier_options,
            retailer_options=match.retailer_options,
            manually_mapped=False,
        ))

    async def set_manual_variant(
        self,
        product_mapping_id: str,
        supplier_variant_id: str,
        retailer_variant_id: str,
        supplier_options: Optional[List[VariantOption]] = None,
        retailer_options: Optional[List[VariantOption]] = None,
    ) -> VariantMapping:
        return await self.db.upsert_variant_mapping(VariantMapping(
            product_mapping_id=product_mapping_id,
            supplier_variant_id=supplier_variant_id,
            retailer_variant_id=retailer_variant_id,
            supplier_options=supplier_options or [],
            retailer_options=retailer_options or [],
            manually_mapped=True,
        ))

    async def clear_manual_variant(self, product_mapping_id: str, supplier_variant_id: str) -> bool:
        """Drop the manual flag so the next auto-match may overwrite the link."""
        return await self.db.set_variant_manual_flag(
            product_mapping_id, supplier_variant_id, False
        )
