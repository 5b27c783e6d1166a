from datetime import datetime

from pydantic import BaseModel

from stock_ledger.app.db.models.core_types import LocationKind, MovementType


class LocationRead(BaseModel):
    id: int
    parent_id: int | None
    kind: LocationKind
    code: str | None
    name: str | None
    level_number: int | None = None
    slot_number: int | None = None
    address: str | None = None
    description: str | None = None

    class Config:
        from_attributes = True


class StockRecordRead(BaseModel):
    id: int
    product_id: str
    variant_id: str | None
    variant_name: str | None
    variant_sku: str | None
    location_id: int

    quantity: int
    reserved_quantity: int
    available: int  # READ ONLY : quantity - reserved_quantity

    class Config:
        from_attributes = True


class StockRecordAddressedRead(StockRecordRead):
    warehouse_id: int | None
    full_address: str | None
    updated_at: datetime | None = None


class MovementRead(BaseModel):
    id: int
    sequence: int
    movement_type: MovementType
    product_id: str
    variant_id: str | None
    variant_name: str | None
    quantity: int
    source_location_id: int | None
    target_location_id: int | None
    reference: str | None
    note: str | None
    quotation_id: str | None
    correlation_id: str | None
    reversal_of_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class ThresholdRead(BaseModel):
    product_id: str
    variant_id: str | None
    min_stock: int

    class Config:
        from_attributes = True
