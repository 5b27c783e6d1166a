from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.app.db.session import SessionLocal
from stock_ledger.app.db.models.models_v1 import Location
from stock_ledger.app.db.models.core_types import LocationKind
from stock_ledger.services import locations as registry

DEMO_WAREHOUSE_CODE = "WH1"


def seed_demo_hierarchy(db: Session, *, levels: int = 2, slots_per_level: int = 3) -> Location:
    """
    Entrepôt de démo : WH1 / A / L1..Ln / S1..Sm.
    Idempotent : si WH1 existe déjà on ne touche à rien.
    """
    wh = db.scalar(
        select(Location)
        .where(Location.kind == LocationKind.warehouse)
        .where(Location.code == DEMO_WAREHOUSE_CODE)
    )
    if wh:
        return wh

    wh = registry.create_warehouse(db, name="Main warehouse", code=DEMO_WAREHOUSE_CODE)
    group = registry.create_rack_group(db, warehouse_id=wh.id, name="Rack A", code="A")
    for level_number in range(1, levels + 1):
        level = registry.create_rack_level(db, rack_group_id=group.id, level_number=level_number)
        for slot_number in range(1, slots_per_level + 1):
            registry.create_rack_slot(db, rack_level_id=level.id, slot_number=slot_number)
    return wh


def run_seed():
    db = SessionLocal()
    try:
        wh = seed_demo_hierarchy(db)
        print(f"SEED OK: warehouse={wh.code} id={wh.id}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
