import pytest
from sqlalchemy import func, select

from stock_ledger.app.db.models.core_types import MovementType, OfferStatus
from stock_ledger.app.db.models.models_v1 import StockMovement, StockRecord
from stock_ledger.services import delivery, inventory, reservations
from stock_ledger.services import locations as registry
from stock_ledger.services.errors import (
    ConcurrencyError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ReservationViolationError,
    ValidationError,
)
from stock_ledger.services.movements import list_movements


def _movement_count(db):
    return db.scalar(select(func.count(StockMovement.id)))


def _assert_conservation(db, product_id):
    """Somme du journal == somme des soldes, pour un produit."""
    logged = db.scalar(
        select(func.coalesce(func.sum(StockMovement.quantity), 0)).where(StockMovement.product_id == product_id)
    )
    on_hand = db.scalar(
        select(func.coalesce(func.sum(StockRecord.quantity), 0)).where(StockRecord.product_id == product_id)
    )
    assert logged == on_hand


def test_stock_in_creates_record_and_movement(db_session, slots):
    """
    GIVEN un slot vide
    WHEN stock_in(P1, S1, 10)
    THEN record {quantity: 10, reserved: 0} + un mouvement IN +10
    """
    rec = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=10, reference="PO-1")

    assert rec.quantity == 10
    assert rec.reserved_quantity == 0
    assert rec.available == 10

    (mv,) = list_movements(db_session)
    assert mv.movement_type == MovementType.stock_in
    assert mv.quantity == 10
    assert mv.target_location_id == slots[0].id
    assert mv.source_location_id is None
    assert mv.reference == "PO-1"


def test_stock_in_accumulates_on_the_same_record(db_session, slots):
    first = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=4)
    second = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=6)

    assert first.id == second.id
    assert second.quantity == 10
    assert db_session.scalar(select(func.count(StockRecord.id))) == 1
    assert _movement_count(db_session) == 2


def test_variants_are_distinct_records(db_session, slots):
    plain = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=1)
    red = inventory.stock_in(
        db_session,
        product_id="P1",
        variant_id="red",
        variant_name="Red",
        location_id=slots[0].id,
        quantity=2,
    )

    assert plain.id != red.id
    assert plain.variant_id is None
    assert red.variant_id == "red"
    assert red.variant_name == "Red"


@pytest.mark.parametrize("quantity", [0, -3])
def test_stock_in_rejects_non_positive_quantity(db_session, slots, quantity):
    with pytest.raises(ValidationError):
        inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=quantity)
    assert _movement_count(db_session) == 0


def test_stock_in_only_on_a_slot(db_session, warehouse, slots):
    with pytest.raises(NotFoundError):
        inventory.stock_in(db_session, product_id="P1", location_id=warehouse.id, quantity=1)
    with pytest.raises(NotFoundError):
        inventory.stock_in(db_session, product_id="P1", location_id=slots[0].parent_id, quantity=1)
    with pytest.raises(ValidationError):
        inventory.stock_in(db_session, product_id=" ", location_id=slots[0].id, quantity=1)


def test_transfer_moves_quantity_with_two_correlated_movements(db_session, slots):
    s1, s2 = slots[0].id, slots[1].id
    inventory.stock_in(db_session, product_id="P1", location_id=s1, quantity=10)

    result = inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=4)

    assert result.source.quantity == 6
    assert result.target.quantity == 4
    out, into = result.movements
    assert (out.quantity, into.quantity) == (-4, 4)
    assert out.movement_type == into.movement_type == MovementType.transfer
    assert out.correlation_id == into.correlation_id is not None
    assert (out.source_location_id, out.target_location_id) == (s1, s2)
    assert out.sequence < into.sequence
    _assert_conservation(db_session, "P1")


def test_transfer_insufficient_stock_changes_nothing(db_session, slots):
    s1, s2 = slots[0].id, slots[1].id
    inventory.stock_in(db_session, product_id="P1", location_id=s1, quantity=10)
    inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=4)
    before = _movement_count(db_session)

    with pytest.raises(InsufficientStockError) as exc:
        inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=100)

    assert exc.value.shortfall == 94
    assert exc.value.available == 6
    records = {r.location_id: r.quantity for r in db_session.scalars(select(StockRecord))}
    assert records == {s1: 6, s2: 4}
    assert _movement_count(db_session) == before


def test_transfer_from_empty_location(db_session, slots):
    with pytest.raises(InsufficientStockError) as exc:
        inventory.transfer(
            db_session, product_id="P1", source_location_id=slots[0].id, target_location_id=slots[1].id, quantity=1
        )
    assert exc.value.available == 0
    assert db_session.scalar(select(func.count(StockRecord.id))) == 0


def test_transfer_same_location_is_invalid(db_session, slots):
    with pytest.raises(ValidationError):
        inventory.transfer(
            db_session, product_id="P1", source_location_id=slots[0].id, target_location_id=slots[0].id, quantity=1
        )


def test_transfer_cannot_take_reserved_units(db_session, slots, make_quotation):
    s1, s2 = slots[0].id, slots[1].id
    inventory.stock_in(db_session, product_id="P1", location_id=s1, quantity=10)
    qid = make_quotation("Q1", [("P1", 7)])
    reservations.set_offer_status(db_session, qid, OfferStatus.accepted)

    with pytest.raises(InsufficientStockError) as exc:
        inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=4)
    assert exc.value.available == 3

    result = inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s2, quantity=3)
    assert result.source.quantity == 7
    assert result.source.reserved_quantity == 7


def test_adjust_logs_the_delta(db_session, slots):
    rec = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=10)

    inventory.adjust_quantity(db_session, rec.id, quantity=7, note="inventaire")

    latest = list_movements(db_session, limit=1)[0]
    assert latest.movement_type == MovementType.adjust
    assert latest.quantity == -3
    assert latest.source_location_id == slots[0].id
    assert latest.note == "inventaire"
    assert db_session.get(StockRecord, rec.id).quantity == 7
    _assert_conservation(db_session, "P1")


def test_adjust_without_change_writes_no_movement(db_session, slots):
    rec = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=5)

    inventory.adjust_quantity(db_session, rec.id, quantity=5)

    assert _movement_count(db_session) == 1


def test_adjust_below_reserved_is_refused(db_session, slots, make_quotation):
    rec = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=10)
    qid = make_quotation("Q1", [("P1", 5)])
    reservations.set_offer_status(db_session, qid, OfferStatus.accepted)

    with pytest.raises(ReservationViolationError):
        inventory.adjust_quantity(db_session, rec.id, quantity=3)
    with pytest.raises(ValidationError):
        inventory.adjust_quantity(db_session, rec.id, quantity=-1)

    assert db_session.get(StockRecord, rec.id).quantity == 10


def test_delete_record_only_when_empty(db_session, slots):
    rec = inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=2)
    record_id = rec.id

    with pytest.raises(ConflictError):
        inventory.delete_stock_record(db_session, record_id)

    inventory.adjust_quantity(db_session, record_id, quantity=0)
    inventory.delete_stock_record(db_session, record_id)

    assert db_session.get(StockRecord, record_id) is None
    # le journal reste intact
    assert _movement_count(db_session) == 2

    with pytest.raises(NotFoundError):
        inventory.delete_stock_record(db_session, record_id)


def test_concurrent_record_creation_maps_to_busy(db_session, slots):
    inventory.create_record(db_session, product_id="P1", variant_id=None, location_id=slots[0].id)

    with pytest.raises(ConcurrencyError):
        inventory.create_record(db_session, product_id="P1", variant_id=None, location_id=slots[0].id)
    db_session.rollback()


def test_list_stock_resolves_addresses_and_filters(db_session, slots):
    inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=3)
    inventory.stock_in(db_session, product_id="P2", location_id=slots[4].id, quantity=5)

    rows = inventory.list_stock(db_session)
    assert [(r["product_id"], r["full_address"]) for r in rows] == [
        ("P1", "WH1 / A / L1 / S1"),
        ("P2", "WH1 / A / L2 / S2"),
    ]

    only_p2 = inventory.list_stock(db_session, product_id="P2")
    assert len(only_p2) == 1
    assert only_p2[0]["available"] == 5

    by_location = inventory.list_stock(db_session, location_id=slots[0].id)
    assert [r["product_id"] for r in by_location] == ["P1"]


def test_list_stock_by_warehouse(db_session, warehouse, slots):
    inventory.stock_in(db_session, product_id="P1", location_id=slots[0].id, quantity=3)

    other = registry.create_warehouse(db_session, name="Annex", code="WH2")
    rows = inventory.list_stock(db_session, warehouse_id=warehouse.id)

    assert len(rows) == 1
    assert rows[0]["warehouse_id"] == warehouse.id
    assert inventory.list_stock(db_session, warehouse_id=other.id) == []
    with pytest.raises(NotFoundError):
        inventory.list_stock(db_session, warehouse_id=slots[0].id)


def test_conservation_over_mixed_operations(db_session, slots, make_quotation):
    s1, s2, s3 = slots[0].id, slots[1].id, slots[2].id
    inventory.stock_in(db_session, product_id="P1", location_id=s1, quantity=10)
    inventory.stock_in(db_session, product_id="P1", location_id=s2, quantity=5)
    inventory.transfer(db_session, product_id="P1", source_location_id=s1, target_location_id=s3, quantity=2)
    rec = inventory.stock_in(db_session, product_id="P1", location_id=s3, quantity=1)
    inventory.adjust_quantity(db_session, rec.id, quantity=4)

    qid = make_quotation("Q1", [("P1", 9)])
    reservations.set_offer_status(db_session, qid, OfferStatus.accepted)

    delivery.deliver(db_session, qid)
    _assert_conservation(db_session, "P1")

    delivery.revert_delivery(db_session, qid)
    _assert_conservation(db_session, "P1")

    for r in db_session.scalars(select(StockRecord)):
        assert r.quantity >= 0
        assert 0 <= r.reserved_quantity <= r.quantity
