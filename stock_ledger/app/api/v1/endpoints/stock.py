from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stock_ledger.app.api.deps import get_db
from stock_ledger.app.schemas.stock import (
    MovementRead,
    StockRecordAddressedRead,
    StockRecordRead,
    ThresholdRead,
)
from stock_ledger.services import inventory, reporting

router = APIRouter(prefix="/stock")


# ---------- Schemas ----------
class StockInCreate(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    variant_name: str | None = Field(default=None, max_length=255)
    variant_sku: str | None = Field(default=None, max_length=64)
    location_id: int
    quantity: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=128)
    note: str | None = None


class TransferCreate(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    source_location_id: int
    target_location_id: int
    quantity: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=128)
    note: str | None = None


class StockAdjust(BaseModel):
    quantity: int = Field(ge=0)
    note: str | None = None


class ThresholdSet(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    min_stock: int = Field(ge=0)


# ---------- Endpoints ----------
@router.get("", response_model=list[StockRecordAddressedRead])
def get_stock(
    warehouse_id: int | None = None,
    location_id: int | None = None,
    product_id: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Stock (lecture)
    - full_address résolu par remontée des ancêtres
    - available = quantity - reserved_quantity
    """
    return inventory.list_stock(db, warehouse_id=warehouse_id, location_id=location_id, product_id=product_id)


@router.post("/in", response_model=StockRecordRead, status_code=201)
def stock_in(payload: StockInCreate, db: Session = Depends(get_db)):
    return inventory.stock_in(db, **payload.model_dump())


@router.post("/transfer", status_code=201)
def transfer_stock(payload: TransferCreate, db: Session = Depends(get_db)):
    result = inventory.transfer(db, **payload.model_dump())
    return {
        "source": StockRecordRead.model_validate(result.source),
        "target": StockRecordRead.model_validate(result.target),
        "movements": [MovementRead.model_validate(mv) for mv in result.movements],
    }


@router.get("/low-stock")
def get_low_stock(db: Session = Depends(get_db)):
    return reporting.low_stock(db)


@router.get("/thresholds", response_model=list[ThresholdRead])
def get_thresholds(db: Session = Depends(get_db)):
    return reporting.list_thresholds(db)


@router.put("/thresholds", response_model=ThresholdRead)
def set_threshold(payload: ThresholdSet, db: Session = Depends(get_db)):
    return reporting.set_min_stock(db, **payload.model_dump())


@router.put("/{record_id}", response_model=StockRecordRead)
def adjust_stock(record_id: int, payload: StockAdjust, db: Session = Depends(get_db)):
    return inventory.adjust_quantity(db, record_id, quantity=payload.quantity, note=payload.note)


@router.delete("/{record_id}")
def delete_stock(record_id: int, db: Session = Depends(get_db)):
    inventory.delete_stock_record(db, record_id)
    return {"id": record_id, "deleted": True}
