"""
Shopify API module.
"""

from .client import (
    ShopifyClient,
    ShopifyClientError,
    ShopifyAuthError,
    ShopifyRateLimitError,
    ShopifyServerError,
    ShopifyUserError,
    TRANSIENT_ERRORS,
)
from .bulk_operations import (
    BulkJobClient,
    BulkOperation,
    BulkOperationStatus,
    BulkOperationType,
    BulkOperationError,
    BulkOperationInProgress,
    BulkOperationFailed,
    BulkOperationCanceled,
    BulkOperationExpired,
    BulkOperationTimeout,
    PollPolicy,
    StagedUploadTarget,
)
from .batch_update import BatchUpdateResult, batch_update_variants, bulk_update_variants
from .platform import (
    CreatedItem,
    DraftOrder,
    NewItem,
    OrderLine,
    PriceUpdate,
    ShopifyPlatform,
    shopify_platform_factory,
)

__all__ = [
    "ShopifyClient",
    "ShopifyClientError",
    "ShopifyAuthError",
    "ShopifyRateLimitError",
    "ShopifyServerError",
    "ShopifyUserError",
    "TRANSIENT_ERRORS",
    "BulkJobClient",
    "BulkOperation",
    "BulkOperationStatus",
    "BulkOperationType",
    "BulkOperationError",
    "BulkOperationInProgress",
    "BulkOperationFailed",
    "BulkOperationCanceled",
    "BulkOperationExpired",
    "BulkOperationTimeout",
    "PollPolicy",
    "StagedUploadTarget",
    "BatchUpdateResult",
    "batch_update_variants",
    "bulk_update_variants",
    "CreatedItem",
    "DraftOrder",
    "NewItem",
    "OrderLine",
    "PriceUpdate",
    "ShopifyPlatform",
    "shopify_platform_factory",
]
