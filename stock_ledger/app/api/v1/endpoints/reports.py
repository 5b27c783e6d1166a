from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stock_ledger.app.api.deps import get_db
from stock_ledger.services import reporting

router = APIRouter(prefix="/reports")


@router.get("/by-warehouse")
def by_warehouse(db: Session = Depends(get_db)):
    return reporting.report_by_warehouse(db)


@router.get("/by-product")
def by_product(db: Session = Depends(get_db)):
    return reporting.report_by_product(db)


@router.get("/movements")
def movements_summary(
    since: datetime | None = None,
    until: datetime | None = None,
    db: Session = Depends(get_db),
):
    return reporting.movement_summary(db, since=since, until=until)
