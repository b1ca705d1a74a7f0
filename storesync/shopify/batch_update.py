"""
Batch price updates for retailer variants.

Small update sets go through one productVariantsBulkUpdate call per product.
Large sets are staged as a JSONL file and run as a single bulk mutation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .bulk_operations import BulkJobClient, PollPolicy
from .client import ShopifyClient, ShopifyClientError, raise_for_user_errors
from .mutations import PRODUCT_VARIANTS_BULK_UPDATE

logger = logging.getLogger(__name__)


@dataclass
class BatchUpdateResult:
    """Outcome of a price batch, keyed by product."""
    success_count: int = 0
    error_count: int = 0
    errors_by_product: Dict[str, str] = field(default_factory=dict)

    def record_error(self, product_id: str, message: str) -> None:
        self.errors_by_product[product_id] = message
        self.error_count += 1


async def batch_update_variants(
    client: ShopifyClient,
    updates_by_product: Dict[str, List[dict]],
    delay_seconds: float = 0.5
) -> BatchUpdateResult:
    """
    Update variant prices one product at a time.

    Args:
        client: ShopifyClient for the retailer store
        updates_by_product: product_id -> [{"id": variant_id, "price": "12.50"}, ...]
        delay_seconds: Pause between calls to stay under the rate limit

    Returns:
        BatchUpdateResult with per-product errors
    """
    result = BatchUpdateResult()
    total = len(updates_by_product)

    for processed, (product_id, variants) in enumerate(updates_by_product.items(), start=1):
        try:
            data = await client.execute(
                PRODUCT_VARIANTS_BULK_UPDATE,
                variables={"productId": product_id, "variants": variants}
            )
            raise_for_user_errors("productVariantsBulkUpdate", data.get("productVariantsBulkUpdate"))
            result.success_count += 1
            logger.debug(f"Updated {len(variants)} variant prices for {product_id}")
        except ShopifyClientError as e:
            result.record_error(product_id, str(e))
            logger.warning(f"Failed to update prices for {product_id}: {e}")

        if processed % 100 == 0 or processed == total:
            logger.info(f"Progress: {processed}/{total} products ({int(processed / total * 100)}%)")

        if delay_seconds > 0 and processed < total:
            await asyncio.sleep(delay_seconds)

    logger.info(
        f"Price update complete: {result.success_count} succeeded, {result.error_count} failed"
    )
    return result


async def bulk_update_variants(
    bulk: BulkJobClient,
    updates_by_product: Dict[str, List[dict]],
    policy: Optional[PollPolicy] = None,
) -> BatchUpdateResult:
    """
    Update variant prices through a staged bulk mutation.

    Each product becomes one JSONL line. The result file is streamed back and
    lines carrying userErrors are attributed to their product via __lineNumber.
    """
    product_ids = list(updates_by_product)
    variables = [
        {"productId": product_id, "variants": updates_by_product[product_id]}
        for product_id in product_ids
    ]

    operation = await bulk.run_bulk_mutation(
        PRODUCT_VARIANTS_BULK_UPDATE, variables, policy=policy
    )

    result = BatchUpdateResult()
    failed = set()

    if operation.url:
        async for line in bulk.stream_results(operation.url):
            index = line.get("__lineNumber")
            if index is None or index >= len(product_ids):
                continue
            payload = (line.get("data") or {}).get("productVariantsBulkUpdate") or {}
            user_errors = payload.get("userErrors") or []
            if user_errors:
                product_id = product_ids[index]
                failed.add(product_id)
                result.record_error(
                    product_id, "; ".join(e.get("message", str(e)) for e in user_errors)
                )

    result.success_count = len(product_ids) - len(failed)
    logger.info(
        f"Bulk price update {operation.id}: {result.success_count} succeeded, "
        f"{result.error_count} failed"
    )
    return result
