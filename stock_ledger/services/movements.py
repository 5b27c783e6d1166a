"""
Movement log.

Journal append-only de toutes les variations de solde. append_movement est le
seul écrivain ; aucune fonction ne modifie ni ne supprime un mouvement.
L'ordre total est l'id (sequence), jamais created_at.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from stock_ledger.app.db.models.core_types import MovementType
from stock_ledger.app.db.models.models_v1 import StockMovement, StockRecord

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


def append_movement(
    db: Session,
    *,
    movement_type: MovementType,
    record: StockRecord,
    quantity: int,
    source_location_id: int | None = None,
    target_location_id: int | None = None,
    reference: str | None = None,
    note: str | None = None,
    quotation_id: str | None = None,
    correlation_id: str | None = None,
    reversal_of_id: int | None = None,
) -> StockMovement:
    mv = StockMovement(
        movement_type=movement_type,
        product_id=record.product_id,
        variant_id=record.variant_id,
        variant_name=record.variant_name,
        quantity=quantity,
        source_location_id=source_location_id,
        target_location_id=target_location_id,
        reference=reference,
        note=note,
        quotation_id=quotation_id,
        correlation_id=correlation_id,
        reversal_of_id=reversal_of_id,
    )
    db.add(mv)
    db.flush()
    return mv


def list_movements(
    db: Session,
    *,
    limit: int = DEFAULT_LIMIT,
    product_id: str | None = None,
    variant_id: str | None = None,
    location_id: int | None = None,
    movement_type: MovementType | None = None,
    quotation_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[StockMovement]:
    """Mouvements filtrés, du plus récent au plus ancien (par sequence)."""
    limit = max(1, min(int(limit), MAX_LIMIT))

    stmt = select(StockMovement)
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)
    if variant_id is not None:
        stmt = stmt.where(StockMovement.variant_id == variant_id)
    if location_id is not None:
        stmt = stmt.where(
            (StockMovement.source_location_id == location_id)
            | (StockMovement.target_location_id == location_id)
        )
    if movement_type is not None:
        stmt = stmt.where(StockMovement.movement_type == movement_type)
    if quotation_id is not None:
        stmt = stmt.where(StockMovement.quotation_id == quotation_id)
    if since is not None:
        stmt = stmt.where(StockMovement.created_at >= since)
    if until is not None:
        stmt = stmt.where(StockMovement.created_at < until)

    stmt = stmt.order_by(StockMovement.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def outstanding_delivery_movements(db: Session, quotation_id: str) -> list[StockMovement]:
    """
    DELIVERY_OUT du devis qui n'ont pas encore de DELIVERY_REVERT associé,
    du plus récent au plus ancien (ordre de rejeu d'un revert).
    """
    revert = aliased(StockMovement)
    stmt = (
        select(StockMovement)
        .outerjoin(revert, revert.reversal_of_id == StockMovement.id)
        .where(StockMovement.quotation_id == quotation_id)
        .where(StockMovement.movement_type == MovementType.delivery_out)
        .where(revert.id.is_(None))
        .order_by(StockMovement.id.desc())
    )
    return list(db.execute(stmt).scalars().all())
