from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.auth import get_current_actor
from stockledger.db import get_db
from stockledger.permissions import Actor
from stockledger.routers.common import unwrap
from stockledger.transactions import run_action
from stockledger.variants import schemas
from stockledger.variants.service import merge_variants


router = APIRouter(prefix="/api/variants", tags=["variants"])


@router.post("/merge", response_model=schemas.VariantMergeResponse)
def merge_variants_endpoint(
    payload: schemas.VariantMergeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return unwrap(
        run_action(db, merge_variants, payload.source_variant_id, payload.target_variant_id, actor=actor)
    )
