from typing import Dict, List

from pydantic import BaseModel, ConfigDict


class VariantMergeRequest(BaseModel):
    source_variant_id: int
    target_variant_id: int


class MergedBalance(BaseModel):
    location_id: int
    qty: str


class VariantMergeResponse(BaseModel):
    source_variant_id: int
    target_variant_id: int
    rewritten_lines: int
    rewritten_lots: int
    rewritten_document_lines: Dict[str, int]
    moved_balances: List[MergedBalance]
    merged_balances: List[MergedBalance]

    model_config = ConfigDict(from_attributes=True)
