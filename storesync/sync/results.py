"""
Result models returned by sync workflows.

Batch workflows always report per-item outcomes plus success/error/skipped
counts, so partial failure is visible to the caller.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from ..db.models import SyncFields, TierLevel
from ..mapping.variants import MatchConfidence


class FieldDiff(BaseModel):
    field: str
    supplier_value: Optional[str] = None
    retailer_value: Optional[str] = None
    will_sync: bool
    reason: Optional[str] = None


class ItemPreview(BaseModel):
    supplier_item_id: str
    title: str
    wholesale_price: Optional[str] = None
    retail_price: Optional[str] = None
    markup_explanation: str
    image_url: Optional[str] = None
    sku: Optional[str] = None
    already_imported: bool = False
    diffs: List[FieldDiff] = Field(default_factory=list)
    would_exceed_limit: bool = False


class PreviewSummary(BaseModel):
    total_items: int = 0
    new_imports: int = 0
    updates: int = 0
    would_exceed_limit: int = 0
    missing: int = 0
    plan_limit: int = 0
    current_count: int = 0
    fields_to_sync: SyncFields = Field(default_factory=SyncFields)
    feature_restrictions: List[str] = Field(default_factory=list)


class PreviewResult(BaseModel):
    previews: List[ItemPreview] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)


class ItemResult(BaseModel):
    supplier_item_id: str
    success: bool
    skipped: bool = False
    mapping_id: Optional[str] = None
    retailer_item_id: Optional[str] = None
    error: Optional[str] = None
    suggested_tier: Optional[TierLevel] = None


class BatchSummary(BaseModel):
    total: int = 0
    success: int = 0
    errors: int = 0
    skipped: int = 0
    feature_restrictions: List[str] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[ItemResult], restrictions: Optional[List[str]] = None) -> "BatchSummary":
        return cls(
            total=len(results),
            success=sum(1 for r in results if r.success and not r.skipped),
            errors=sum(1 for r in results if not r.success),
            skipped=sum(1 for r in results if r.skipped),
            feature_restrictions=restrictions or [],
        )


class ImportResult(BaseModel):
    results: List[ItemResult] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)


class PromotionResult(BaseModel):
    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    results: List[ItemResult] = Field(default_factory=list)


class VariantMatchResult(BaseModel):
    supplier_variant_id: str
    retailer_variant_id: Optional[str] = None
    confidence: MatchConfidence
    requires_manual_mapping: bool
    manually_mapped: bool = False


class MappingSyncResult(BaseModel):
    """Outcome of an inventory or price pass over one mapping."""
    mapping_id: str
    success: bool
    skipped: bool = False
    updated: int = 0
    error: Optional[str] = None


class SyncRunSummary(BaseModel):
    connection_id: str
    total: int = 0
    success: int = 0
    errors: int = 0
    skipped: int = 0
    updated: int = 0
    conflicts: int = 0
    feature_restrictions: List[str] = Field(default_factory=list)
    results: List[MappingSyncResult] = Field(default_factory=list)

    def tally(self) -> "SyncRunSummary":
        self.total = len(self.results)
        self.success = sum(1 for r in self.results if r.success and not r.skipped)
        self.errors = sum(1 for r in self.results if not r.success)
        self.skipped = sum(1 for r in self.results if r.skipped)
        self.updated = sum(r.updated for r in self.results)
        return self


class DriftReport(BaseModel):
    connection_id: str
    checked: int = 0
    drifted: List[str] = Field(default_factory=list)


class OrderResult(BaseModel):
    order_ref: str
    accepted: bool
    reason: Optional[str] = None
    suggested_tier: Optional[TierLevel] = None
    draft_order_id: Optional[str] = None
