"""
Deux sessions sur une même base SQLite fichier.

Un seul writer à la fois : la session qui arrive pendant la transaction de
l'autre reçoit ConcurrencyError, et une fois relancée elle voit le solde
commité.
"""

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from stock_ledger.app.db.models.core_types import LocationKind, MovementType
from stock_ledger.app.db.models.models_v1 import Base, StockMovement, StockRecord
from stock_ledger.app.db.seed import seed_demo_hierarchy
from stock_ledger.app.db.session import configure_sqlite, engine_connect_args
from stock_ledger.services import inventory
from stock_ledger.services import locations as registry
from stock_ledger.services.errors import ConcurrencyError, InsufficientStockError, NotFoundError
from stock_ledger.services.movements import append_movement


@pytest.fixture
def file_engine(tmp_path):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    eng = create_engine(url, connect_args=engine_connect_args(url, 50))
    configure_sqlite(eng)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def sessions(file_engine):
    factory = sessionmaker(bind=file_engine, autoflush=False, autocommit=False)
    a, b = factory(), factory()
    try:
        yield a, b
    finally:
        a.close()
        b.close()


@pytest.fixture
def slot_ids(sessions):
    a, _ = sessions
    seed_demo_hierarchy(a)
    return [s.id for s in registry.list_children(a, LocationKind.rack_slot)]


def _conserved(db) -> bool:
    on_hand = db.scalar(select(func.coalesce(func.sum(StockRecord.quantity), 0)))
    journal = db.scalar(select(func.coalesce(func.sum(StockMovement.quantity), 0)))
    return on_hand == journal


def test_interleaved_stock_in_does_not_lose_updates(sessions, slot_ids):
    """
    GIVEN P1 : S1=10, A lit le record S1 dans sa transaction
    WHEN B fait stock_in +5 sur S1 pendant que A ajoute +3
    THEN B reçoit ConcurrencyError, puis sa relance donne 18 (aucune écriture perdue)
    """
    a, b = sessions
    s1 = slot_ids[0]
    inventory.stock_in(a, product_id="P1", location_id=s1, quantity=10)

    rec = inventory.lock_records_at(a, "P1", None, [s1])[s1]
    with pytest.raises(ConcurrencyError):
        inventory.stock_in(b, product_id="P1", location_id=s1, quantity=5)

    rec.quantity += 3
    append_movement(a, movement_type=MovementType.stock_in, record=rec, quantity=3, target_location_id=s1)
    a.commit()

    retried = inventory.stock_in(b, product_id="P1", location_id=s1, quantity=5)

    assert retried.quantity == 18
    assert _conserved(b)


def test_interleaved_transfers_cannot_both_pass_availability(sessions, slot_ids):
    """
    GIVEN P1 : S1=10
    WHEN A et B transfèrent chacun 8 depuis S1
    THEN un seul transfert passe, l'autre voit available = 2
    """
    a, b = sessions
    s1, s2, s3 = slot_ids[:3]
    inventory.stock_in(a, product_id="P1", location_id=s1, quantity=10)

    src = inventory.lock_records_at(a, "P1", None, [s1])[s1]
    assert src.available == 10
    with pytest.raises(ConcurrencyError):
        inventory.transfer(b, product_id="P1", source_location_id=s1, target_location_id=s3, quantity=8)

    inventory.transfer(a, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=8)

    with pytest.raises(InsufficientStockError) as exc:
        inventory.transfer(b, product_id="P1", source_location_id=s1, target_location_id=s3, quantity=8)
    assert exc.value.available == 2

    balances = {r.location_id: r.quantity for r in b.scalars(select(StockRecord))}
    assert balances == {s1: 2, s2: 8}
    assert _conserved(b)


def test_stock_in_on_slot_deleted_meanwhile_is_not_found(sessions, slot_ids):
    """
    GIVEN A tient le slot S3 (vide) dans sa transaction
    WHEN B fait stock_in sur S3, puis A supprime S3 et B relance
    THEN ConcurrencyError puis NotFoundError, jamais d'IntegrityError
    """
    a, b = sessions
    s3 = slot_ids[2]

    registry.get_slot(a, s3, lock=True)
    with pytest.raises(ConcurrencyError):
        inventory.stock_in(b, product_id="P1", location_id=s3, quantity=1)
    a.rollback()

    registry.delete_location(a, s3, kind=LocationKind.rack_slot)

    with pytest.raises(NotFoundError):
        inventory.stock_in(b, product_id="P1", location_id=s3, quantity=1)
    assert b.scalar(select(func.count(StockRecord.id))) == 0


def test_locked_slot_lookup_rejects_missing_and_inner_locations(db_session, warehouse, slots):
    level_id = slots[0].parent_id

    assert registry.get_slot(db_session, slots[0].id, lock=True).id == slots[0].id
    with pytest.raises(NotFoundError):
        registry.get_slot(db_session, 999_999, lock=True)
    with pytest.raises(NotFoundError):
        registry.get_slot(db_session, level_id, lock=True)
