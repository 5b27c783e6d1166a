from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stock_ledger.app.api.deps import get_db
from stock_ledger.app.db.models.core_types import MovementType
from stock_ledger.app.schemas.stock import MovementRead
from stock_ledger.services.movements import DEFAULT_LIMIT, MAX_LIMIT, list_movements

router = APIRouter(prefix="/movements")


@router.get("", response_model=list[MovementRead])
def get_movements(
    limit: int = Query(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    product_id: str | None = None,
    variant_id: str | None = None,
    location_id: int | None = None,
    movement_type: MovementType | None = None,
    quotation_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    db: Session = Depends(get_db),
):
    """Journal des mouvements, le plus récent en premier (ordre = sequence)."""
    return list_movements(
        db,
        limit=limit,
        product_id=product_id,
        variant_id=variant_id,
        location_id=location_id,
        movement_type=movement_type,
        quotation_id=quotation_id,
        since=since,
        until=until,
    )
