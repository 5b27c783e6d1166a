"""
Stock ledger.

Solde courant + réservé par (produit/variante, slot). Toute mutation :
- se fait dans une transaction (atomic),
- verrouille les StockRecord touchés (SELECT ... FOR UPDATE, ordre stable
  location_id, product_id, variant_key),
- écrit un mouvement dans le journal,
- ne laisse jamais quantity < 0 ni reserved_quantity > quantity.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_ledger.app.db.models.core_types import LocationKind, MovementType
from stock_ledger.app.db.models.models_v1 import StockMovement, StockRecord
from stock_ledger.services.errors import (
    ConcurrencyError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ReservationViolationError,
    ValidationError,
)
from stock_ledger.services.locations import get_location, get_slot, load_arena
from stock_ledger.services.movements import append_movement
from stock_ledger.services.transaction import atomic

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    source: StockRecord
    target: StockRecord
    movements: list[StockMovement]


# ---------- Helpers ----------
def variant_key(variant_id: str | None) -> str:
    return (variant_id or "").strip()


def _variant_or_none(variant_id: str | None) -> str | None:
    return variant_key(variant_id) or None


def _require_product(product_id: str | None) -> str:
    product_id = (product_id or "").strip()
    if not product_id:
        raise ValidationError("product_id is required")
    return product_id


def _positive_qty(quantity: int | None) -> int:
    if quantity is None or int(quantity) != quantity or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return int(quantity)


def record_lock_order():
    return (StockRecord.location_id, StockRecord.product_id, StockRecord.variant_key)


def lock_record(db: Session, record_id: int) -> StockRecord:
    rec = (
        db.execute(select(StockRecord).where(StockRecord.id == record_id).with_for_update())
        .scalar_one_or_none()
    )
    if not rec:
        raise NotFoundError(f"stock record {record_id} not found")
    return rec


def lock_records_at(
    db: Session,
    product_id: str,
    variant_id: str | None,
    location_ids: Iterable[int],
) -> dict[int, StockRecord]:
    """Verrouille les records existants d'un produit sur ces locations, {location_id: record}."""
    rows = (
        db.execute(
            select(StockRecord)
            .where(StockRecord.product_id == product_id)
            .where(StockRecord.variant_key == variant_key(variant_id))
            .where(StockRecord.location_id.in_(sorted(set(location_ids))))
            .order_by(*record_lock_order())
            .with_for_update()
        )
        .scalars()
        .all()
    )
    return {int(r.location_id): r for r in rows}


def create_record(
    db: Session,
    *,
    product_id: str,
    variant_id: str | None,
    location_id: int,
    variant_name: str | None = None,
    variant_sku: str | None = None,
) -> StockRecord:
    rec = StockRecord(
        product_id=product_id,
        variant_id=_variant_or_none(variant_id),
        variant_key=variant_key(variant_id),
        variant_name=variant_name,
        variant_sku=variant_sku,
        location_id=location_id,
        quantity=0,
        reserved_quantity=0,
    )
    db.add(rec)
    # Concurrence : deux créations simultanées du même couple -> unique violée
    try:
        db.flush()
    except IntegrityError as e:
        raise ConcurrencyError(
            f"Stock record for product {product_id} at location {location_id} was created concurrently, retry"
        ) from e
    return rec


def get_or_create_record(
    db: Session,
    *,
    product_id: str,
    variant_id: str | None,
    location_id: int,
    variant_name: str | None = None,
    variant_sku: str | None = None,
) -> StockRecord:
    rec = lock_records_at(db, product_id, variant_id, [location_id]).get(location_id)
    if rec:
        # snapshot : on garde le dernier libellé connu
        if variant_name:
            rec.variant_name = variant_name
        if variant_sku:
            rec.variant_sku = variant_sku
        return rec
    return create_record(
        db,
        product_id=product_id,
        variant_id=variant_id,
        location_id=location_id,
        variant_name=variant_name,
        variant_sku=variant_sku,
    )


# ---------- Reservations (interne) ----------
def increase_reserved(rec: StockRecord, quantity: int) -> None:
    """Le record doit être verrouillé par l'appelant."""
    quantity = _positive_qty(quantity)
    if rec.reserved_quantity + quantity > rec.quantity:
        raise ReservationViolationError(
            f"Cannot reserve {quantity} on stock record {rec.id} "
            f"(quantity={rec.quantity}, reserved={rec.reserved_quantity})"
        )
    rec.reserved_quantity += quantity


def release_reserved(rec: StockRecord, quantity: int) -> None:
    """Le record doit être verrouillé par l'appelant."""
    quantity = _positive_qty(quantity)
    if quantity > rec.reserved_quantity:
        raise ReservationViolationError(
            f"Cannot release {quantity} on stock record {rec.id} (reserved={rec.reserved_quantity})"
        )
    rec.reserved_quantity -= quantity


# ---------- Operations ----------
def stock_in(
    db: Session,
    *,
    product_id: str,
    location_id: int,
    quantity: int,
    variant_id: str | None = None,
    variant_name: str | None = None,
    variant_sku: str | None = None,
    reference: str | None = None,
    note: str | None = None,
) -> StockRecord:
    product_id = _require_product(product_id)
    quantity = _positive_qty(quantity)

    with atomic(db, "stock_in"):
        get_slot(db, location_id, lock=True)
        rec = get_or_create_record(
            db,
            product_id=product_id,
            variant_id=variant_id,
            location_id=location_id,
            variant_name=variant_name,
            variant_sku=variant_sku,
        )
        rec.quantity += quantity
        append_movement(
            db,
            movement_type=MovementType.stock_in,
            record=rec,
            quantity=quantity,
            target_location_id=location_id,
            reference=reference,
            note=note,
        )

    logger.info(f"[stock_in] product={product_id} variant={variant_id} location={location_id} qty=+{quantity}")
    return rec


def transfer(
    db: Session,
    *,
    product_id: str,
    source_location_id: int,
    target_location_id: int,
    quantity: int,
    variant_id: str | None = None,
    reference: str | None = None,
    note: str | None = None,
) -> TransferResult:
    """
    Transfert atomique source -> cible.

    Si source.available < quantity : InsufficientStockError, rien n'est écrit.
    Sinon deux mouvements TRANSFER corrélés (-qty source, +qty cible).
    """
    product_id = _require_product(product_id)
    quantity = _positive_qty(quantity)
    if source_location_id == target_location_id:
        raise ValidationError("source_location_id and target_location_id must differ")

    with atomic(db, "transfer"):
        for slot_id in sorted((source_location_id, target_location_id)):
            get_slot(db, slot_id, lock=True)

        # les deux lignes verrouillées en une fois, dans l'ordre location_id
        locked = lock_records_at(db, product_id, variant_id, [source_location_id, target_location_id])
        src = locked.get(source_location_id)
        available = src.available if src else 0
        if available < quantity:
            raise InsufficientStockError(
                product_id=product_id,
                variant_id=_variant_or_none(variant_id),
                requested=quantity,
                available=available,
            )

        dst = locked.get(target_location_id) or create_record(
            db,
            product_id=product_id,
            variant_id=variant_id,
            location_id=target_location_id,
            variant_name=src.variant_name,
            variant_sku=src.variant_sku,
        )

        src.quantity -= quantity
        dst.quantity += quantity

        correlation_id = str(uuid.uuid4())
        movements = [
            append_movement(
                db,
                movement_type=MovementType.transfer,
                record=src,
                quantity=-quantity,
                source_location_id=source_location_id,
                target_location_id=target_location_id,
                reference=reference,
                note=note,
                correlation_id=correlation_id,
            ),
            append_movement(
                db,
                movement_type=MovementType.transfer,
                record=dst,
                quantity=quantity,
                source_location_id=source_location_id,
                target_location_id=target_location_id,
                reference=reference,
                note=note,
                correlation_id=correlation_id,
            ),
        ]

    logger.info(
        f"[transfer] product={product_id} variant={variant_id} "
        f"{source_location_id}->{target_location_id} qty={quantity} correlation={correlation_id}"
    )
    return TransferResult(source=src, target=dst, movements=movements)


def adjust_quantity(db: Session, record_id: int, *, quantity: int, note: str | None = None) -> StockRecord:
    """
    Inventaire : fixe la quantité physique d'un record.

    delta = quantity - ancienne quantité, journalisé en ADJUST. Un delta nul
    ne produit aucun mouvement.
    """
    if quantity is None or int(quantity) != quantity or quantity < 0:
        raise ValidationError("quantity must be an integer >= 0")
    quantity = int(quantity)

    with atomic(db, "adjust_quantity"):
        rec = lock_record(db, record_id)
        if quantity < rec.reserved_quantity:
            raise ReservationViolationError(
                f"quantity {quantity} is below reserved quantity {rec.reserved_quantity}",
                reserved_quantity=rec.reserved_quantity,
            )

        delta = quantity - rec.quantity
        if delta != 0:
            rec.quantity = quantity
            append_movement(
                db,
                movement_type=MovementType.adjust,
                record=rec,
                quantity=delta,
                source_location_id=rec.location_id if delta < 0 else None,
                target_location_id=rec.location_id if delta > 0 else None,
                note=note,
            )

    logger.info(f"[adjust_quantity] record={record_id} delta={delta:+d}")
    return rec


def delete_stock_record(db: Session, record_id: int) -> None:
    with atomic(db, "delete_stock_record"):
        rec = lock_record(db, record_id)
        if rec.quantity != 0 or rec.reserved_quantity != 0:
            raise ConflictError(
                f"Stock record {record_id} is not empty "
                f"(quantity={rec.quantity}, reserved={rec.reserved_quantity})"
            )
        db.delete(rec)

    logger.info(f"[delete_stock_record] record={record_id}")


def list_stock(
    db: Session,
    *,
    warehouse_id: int | None = None,
    location_id: int | None = None,
    product_id: str | None = None,
) -> list[dict]:
    """Records avec adresse complète résolue (lecture, sans verrou)."""
    arena = load_arena(db)

    stmt = select(StockRecord).order_by(*record_lock_order())
    if warehouse_id is not None:
        get_location(db, warehouse_id, LocationKind.warehouse)
        slot_ids = arena.descendants(warehouse_id)
        if not slot_ids:
            return []
        stmt = stmt.where(StockRecord.location_id.in_(slot_ids))
    if location_id is not None:
        stmt = stmt.where(StockRecord.location_id == location_id)
    if product_id is not None:
        stmt = stmt.where(StockRecord.product_id == product_id)

    out = []
    for rec in db.execute(stmt).scalars().all():
        warehouse = arena.warehouse_of(rec.location_id)
        out.append(
            {
                "id": rec.id,
                "product_id": rec.product_id,
                "variant_id": rec.variant_id,
                "variant_name": rec.variant_name,
                "variant_sku": rec.variant_sku,
                "location_id": rec.location_id,
                "warehouse_id": warehouse.id if warehouse else None,
                "full_address": arena.full_address(rec.location_id),
                "quantity": rec.quantity,
                "reserved_quantity": rec.reserved_quantity,
                "available": rec.available,
                "updated_at": rec.updated_at,
            }
        )
    return out
