from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stock_ledger.app.api.deps import get_db
from stock_ledger.app.db.models.core_types import LocationKind
from stock_ledger.app.schemas.stock import LocationRead
from stock_ledger.services import locations as registry

router = APIRouter()


# ---------- Schemas ----------
class WarehouseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=64)
    address: str | None = Field(default=None, max_length=500)
    description: str | None = None


class WarehouseUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    code: str | None = Field(default=None, min_length=1, max_length=64)
    address: str | None = Field(default=None, max_length=500)
    description: str | None = None


class RackGroupCreate(BaseModel):
    warehouse_id: int
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=64)
    description: str | None = None


class RackGroupUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    code: str | None = Field(default=None, min_length=1, max_length=64)
    description: str | None = None


class RackLevelCreate(BaseModel):
    rack_group_id: int
    level_number: int = Field(gt=0)
    name: str | None = Field(default=None, max_length=200)


class RackLevelUpdate(BaseModel):
    level_number: int | None = Field(default=None, gt=0)
    name: str | None = Field(default=None, max_length=200)


class RackSlotCreate(BaseModel):
    rack_level_id: int
    slot_number: int = Field(gt=0)
    name: str | None = Field(default=None, max_length=200)


class RackSlotUpdate(BaseModel):
    slot_number: int | None = Field(default=None, gt=0)
    name: str | None = Field(default=None, max_length=200)


# ---------- Helpers ----------
def _changes(payload: BaseModel, rename: dict[str, str] | None = None) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    for src, dst in (rename or {}).items():
        if src in fields:
            fields[dst] = fields.pop(src)
    return fields


def _deleted(location_id: int, deleted_ids: list[int]) -> dict:
    return {"id": location_id, "deleted_ids": deleted_ids}


# ---------- Warehouses ----------
@router.get("/warehouses", response_model=list[LocationRead])
def list_warehouses(db: Session = Depends(get_db)):
    return registry.list_children(db, LocationKind.warehouse)


@router.post("/warehouses", response_model=LocationRead, status_code=201)
def create_warehouse(payload: WarehouseCreate, db: Session = Depends(get_db)):
    return registry.create_warehouse(db, **payload.model_dump())


@router.put("/warehouses/{warehouse_id}", response_model=LocationRead)
def update_warehouse(warehouse_id: int, payload: WarehouseUpdate, db: Session = Depends(get_db)):
    return registry.update_location(db, warehouse_id, kind=LocationKind.warehouse, **_changes(payload))


@router.delete("/warehouses/{warehouse_id}")
def delete_warehouse(warehouse_id: int, db: Session = Depends(get_db)):
    return _deleted(warehouse_id, registry.delete_location(db, warehouse_id, kind=LocationKind.warehouse))


# ---------- Rack groups ----------
@router.get("/rack-groups", response_model=list[LocationRead])
def list_rack_groups(warehouse_id: int | None = None, db: Session = Depends(get_db)):
    return registry.list_children(db, LocationKind.rack_group, parent_id=warehouse_id)


@router.post("/rack-groups", response_model=LocationRead, status_code=201)
def create_rack_group(payload: RackGroupCreate, db: Session = Depends(get_db)):
    return registry.create_rack_group(db, **payload.model_dump())


@router.put("/rack-groups/{rack_group_id}", response_model=LocationRead)
def update_rack_group(rack_group_id: int, payload: RackGroupUpdate, db: Session = Depends(get_db)):
    return registry.update_location(db, rack_group_id, kind=LocationKind.rack_group, **_changes(payload))


@router.delete("/rack-groups/{rack_group_id}")
def delete_rack_group(rack_group_id: int, db: Session = Depends(get_db)):
    return _deleted(rack_group_id, registry.delete_location(db, rack_group_id, kind=LocationKind.rack_group))


# ---------- Rack levels ----------
@router.get("/rack-levels", response_model=list[LocationRead])
def list_rack_levels(rack_group_id: int | None = None, db: Session = Depends(get_db)):
    return registry.list_children(db, LocationKind.rack_level, parent_id=rack_group_id)


@router.post("/rack-levels", response_model=LocationRead, status_code=201)
def create_rack_level(payload: RackLevelCreate, db: Session = Depends(get_db)):
    return registry.create_rack_level(db, **payload.model_dump())


@router.put("/rack-levels/{rack_level_id}", response_model=LocationRead)
def update_rack_level(rack_level_id: int, payload: RackLevelUpdate, db: Session = Depends(get_db)):
    fields = _changes(payload, rename={"level_number": "number"})
    return registry.update_location(db, rack_level_id, kind=LocationKind.rack_level, **fields)


@router.delete("/rack-levels/{rack_level_id}")
def delete_rack_level(rack_level_id: int, db: Session = Depends(get_db)):
    return _deleted(rack_level_id, registry.delete_location(db, rack_level_id, kind=LocationKind.rack_level))


# ---------- Rack slots ----------
@router.get("/rack-slots", response_model=list[LocationRead])
def list_rack_slots(rack_level_id: int | None = None, db: Session = Depends(get_db)):
    return registry.list_children(db, LocationKind.rack_slot, parent_id=rack_level_id)


@router.post("/rack-slots", response_model=LocationRead, status_code=201)
def create_rack_slot(payload: RackSlotCreate, db: Session = Depends(get_db)):
    return registry.create_rack_slot(db, **payload.model_dump())


@router.put("/rack-slots/{rack_slot_id}", response_model=LocationRead)
def update_rack_slot(rack_slot_id: int, payload: RackSlotUpdate, db: Session = Depends(get_db)):
    fields = _changes(payload, rename={"slot_number": "number"})
    return registry.update_location(db, rack_slot_id, kind=LocationKind.rack_slot, **fields)


@router.delete("/rack-slots/{rack_slot_id}")
def delete_rack_slot(rack_slot_id: int, db: Session = Depends(get_db)):
    return _deleted(rack_slot_id, registry.delete_location(db, rack_slot_id, kind=LocationKind.rack_slot))


@router.get("/locations/{slot_id}/address")
def get_full_address(slot_id: int, db: Session = Depends(get_db)):
    return {"location_id": slot_id, "full_address": registry.resolve_full_address(db, slot_id)}
