"""
Connection workflow API routes.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..db import ImportPreferences, VariantMapping
from ..health import ActivityEntry, ConnectionHealth
from ..dependencies import get_orchestrator
from ..shopify import OrderLine
from ..sync import (
    DriftReport,
    ImportResult,
    OrderResult,
    PreviewResult,
    PromotionResult,
    SyncRunSummary,
    VariantMatchResult,
)

router = APIRouter(prefix="/api/connections")


class ItemsRequest(BaseModel):
    item_ids: List[str]
    preferences: Optional[ImportPreferences] = None


class ImportRequest(ItemsRequest):
    materialize: bool = True


class PromoteRequest(BaseModel):
    mapping_ids: List[str]


class PreferencesRequest(BaseModel):
    mapping_ids: List[str]
    preferences: ImportPreferences


class ManualVariantRequest(BaseModel):
    supplier_variant_id: str
    retailer_variant_id: str


class InventoryRequest(BaseModel):
    location_id: Optional[str] = None


class OrderLineIn(BaseModel):
    variant_id: str
    quantity: int


class OrderRequest(BaseModel):
    order_ref: str
    lines: List[OrderLineIn] = []
    automatic: bool = False


class CountResponse(BaseModel):
    message: str
    count: int


@router.post("/{connection_id}/preview", response_model=PreviewResult)
async def preview_import(connection_id: str, body: ItemsRequest):
    """Field-level preview of an import."""
    return await get_orchestrator().preview_import(connection_id, body.item_ids, body.preferences)


@router.post("/{connection_id}/import", response_model=ImportResult)
async def import_items(connection_id: str, body: ImportRequest):
    return await get_orchestrator().import_items(
        connection_id, body.item_ids, body.preferences, materialize=body.materialize
    )


@router.post("/{connection_id}/promote", response_model=PromotionResult)
async def promote_shadow_imports(connection_id: str, body: PromoteRequest):
    """Materialize shadow imports in the retailer store."""
    return await get_orchestrator().promote_shadow_imports(connection_id, body.mapping_ids)


@router.post("/mappings/preferences", response_model=CountResponse)
async def update_mapping_preferences(body: PreferencesRequest):
    count = await get_orchestrator().update_mapping_preferences(body.mapping_ids, body.preferences)
    return CountResponse(message=f"Updated {count} mappings", count=count)


@router.post("/mappings/{mapping_id}/variants/match", response_model=List[VariantMatchResult])
async def auto_match_variants(mapping_id: str):
    return await get_orchestrator().auto_match_variants(mapping_id)


@router.put("/mappings/{mapping_id}/variants", response_model=VariantMapping)
async def manually_map_variant(mapping_id: str, body: ManualVariantRequest):
    return await get_orchestrator().manually_map_variant(
        mapping_id, body.supplier_variant_id, body.retailer_variant_id
    )


@router.delete("/mappings/{mapping_id}/variants/{supplier_variant_id}")
async def clear_manual_variant(mapping_id: str, supplier_variant_id: str):
    cleared = await get_orchestrator().clear_manual_variant(mapping_id, supplier_variant_id)
    if not cleared:
        raise HTTPException(status_code=404, detail="Variant mapping not found")
    return {"cleared": True}


@router.post("/{connection_id}/sync/inventory", response_model=SyncRunSummary)
async def sync_inventory(connection_id: str, body: Optional[InventoryRequest] = None):
    location_id = body.location_id if body else None
    return await get_orchestrator().sync_inventory(connection_id, location_id)


@router.post("/{connection_id}/sync/prices", response_model=SyncRunSummary)
async def sync_prices(connection_id: str):
    return await get_orchestrator().sync_prices(connection_id)


@router.post("/{connection_id}/drift", response_model=DriftReport)
async def detect_sku_drift(connection_id: str):
    """Check mapped items for supplier SKU changes."""
    return await get_orchestrator().detect_sku_drift(connection_id)


@router.post("/{connection_id}/orders", response_model=OrderResult)
async def record_order(connection_id: str, body: OrderRequest):
    return await get_orchestrator().record_order(connection_id, body.order_ref)


@router.post("/{connection_id}/orders/push", response_model=OrderResult)
async def push_order(connection_id: str, body: OrderRequest):
    """Forward a retailer order to the supplier as a draft order."""
    lines = [OrderLine(variant_id=line.variant_id, quantity=line.quantity) for line in body.lines]
    return await get_orchestrator().push_order(
        connection_id, body.order_ref, lines, automatic=body.automatic
    )


@router.post("/{connection_id}/terminate", response_model=CountResponse)
async def terminate_connection(connection_id: str):
    paused = await get_orchestrator().terminate_connection(connection_id)
    return CountResponse(message=f"Connection terminated, {paused} mappings paused", count=paused)


@router.get("/{connection_id}/health", response_model=ConnectionHealth)
async def get_health(connection_id: str):
    return await get_orchestrator().get_health(connection_id)


@router.get("/{connection_id}/activity", response_model=List[ActivityEntry])
async def get_activity(connection_id: str, limit: int = 50):
    return await get_orchestrator().get_activity(connection_id, limit)
