"""
Usage and tier API routes.
"""

from typing import List

from fastapi import APIRouter, HTTPException

from ..dependencies import get_db, get_orchestrator
from ..usage import TierComparisonRow, UsageCheckResult, UsageReport, UsageResource

router = APIRouter(prefix="/api/shops")


@router.get("/{shop_id}/usage", response_model=UsageReport)
async def get_usage_report(shop_id: str):
    """Usage across every capped resource, with warnings."""
    return await get_orchestrator().get_usage_report(shop_id)


@router.get("/{shop_id}/usage/{resource}", response_model=UsageCheckResult)
async def check_usage(shop_id: str, resource: UsageResource):
    return await get_orchestrator().check_usage(shop_id, resource)


@router.get("/{shop_id}/tiers", response_model=List[TierComparisonRow])
async def tier_comparison(shop_id: str):
    shop = await get_db().get_shop(shop_id)
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    return get_orchestrator().ledger.tier_comparison(shop.tier)
