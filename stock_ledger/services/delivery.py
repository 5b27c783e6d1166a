"""
Delivery orchestrator.

accepted (non livré)  --deliver-->  delivered
delivered  --revert_delivery-->  accepted (non livré)

Règle d'allocation (déterministe, auditée) pour une ligne présente sur
plusieurs slots :
    1. d'abord les records qui portent la réservation de ce devis,
    2. puis FIFO par âge du record (id croissant = premier stock-in).

Tout ou rien : toutes les lignes sont validées avant la première écriture,
et l'opération complète tient dans une transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from stock_ledger.app.db.models.core_types import DeliveryStatus, MovementType, OfferStatus
from stock_ledger.app.db.models.models_v1 import Quotation, StockMovement, StockRecord, utcnow
from stock_ledger.services.errors import (
    AlreadyDeliveredError,
    InsufficientStockError,
    NotAcceptedError,
    NotDeliveredError,
)
from stock_ledger.services.inventory import create_record, record_lock_order, release_reserved, variant_key
from stock_ledger.services.locations import get_slot
from stock_ledger.services.movements import append_movement, outstanding_delivery_movements
from stock_ledger.services.reservations import (
    add_reservation,
    line_demands,
    lock_candidate_records,
    lock_quotation,
    quotation_reservations,
)
from stock_ledger.services.transaction import atomic

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    quotation: Quotation
    movements: list[StockMovement]


def _reference(q: Quotation) -> str:
    return f"QUOTATION:{q.number or q.id}"


def plan_allocations(
    records: list[StockRecord],
    own_reserved: dict[int, int],
    quantity: int,
) -> list[tuple[StockRecord, int]]:
    """
    Découpe `quantity` sur les records candidats selon la règle d'allocation.
    Le réservé du devis lui-même compte comme disponible pour lui.
    """
    ordered = sorted(records, key=lambda r: (0 if own_reserved.get(r.id) else 1, r.id))
    plan = []
    remaining = quantity
    for rec in ordered:
        usable = rec.available + own_reserved.get(rec.id, 0)
        take = min(usable, remaining)
        if take > 0:
            plan.append((rec, take))
            remaining -= take
        if remaining == 0:
            break
    return plan


def deliver(db: Session, quotation_id: str) -> DeliveryResult:
    with atomic(db, "deliver"):
        q = lock_quotation(db, quotation_id)
        if q.delivery_status == DeliveryStatus.delivered:
            raise AlreadyDeliveredError(f"quotation {quotation_id} is already delivered")
        if q.offer_status != OfferStatus.accepted or q.is_archived:
            raise NotAcceptedError(f"quotation {quotation_id} is not an active accepted offer")

        demands = line_demands(q)
        reservations = quotation_reservations(db, q.id)
        own_reserved: dict[int, int] = defaultdict(int)
        for res in reservations:
            own_reserved[res.stock_record_id] += res.quantity

        candidates, records = lock_candidate_records(db, list(demands), list(own_reserved))

        # ---------- VALIDATION (aucune écriture) ----------
        plan: list[tuple[StockRecord, int]] = []
        for key, demand in demands.items():
            recs = candidates[key]
            usable = sum(r.available + own_reserved.get(r.id, 0) for r in recs)
            if usable < demand.quantity:
                raise InsufficientStockError(
                    product_id=demand.product_id,
                    variant_id=demand.variant_id,
                    requested=demand.quantity,
                    available=usable,
                )
            plan.extend(plan_allocations(recs, own_reserved, demand.quantity))

        # ---------- ÉCRITURES ----------
        for res in reservations:
            release_reserved(records[res.stock_record_id], res.quantity)
            db.delete(res)

        correlation_id = str(uuid.uuid4())
        movements = []
        for rec, take in plan:
            rec.quantity -= take
            movements.append(
                append_movement(
                    db,
                    movement_type=MovementType.delivery_out,
                    record=rec,
                    quantity=-take,
                    source_location_id=rec.location_id,
                    reference=_reference(q),
                    quotation_id=q.id,
                    correlation_id=correlation_id,
                )
            )

        q.delivery_status = DeliveryStatus.delivered
        q.delivered_at = utcnow()

    logger.info(
        f"[deliver] quotation={quotation_id} lines={len(demands)} allocations={len(movements)} "
        f"correlation={correlation_id}"
    )
    return DeliveryResult(quotation=q, movements=movements)


def _lock_records_for_movements(db: Session, movements: list[StockMovement]) -> dict[tuple, StockRecord]:
    keys = {(m.product_id, variant_key(m.variant_id), m.source_location_id) for m in movements}
    if not keys:
        return {}
    rows = (
        db.execute(
            select(StockRecord)
            .where(
                or_(
                    *[
                        and_(
                            StockRecord.product_id == product_id,
                            StockRecord.variant_key == vkey,
                            StockRecord.location_id == location_id,
                        )
                        for product_id, vkey, location_id in sorted(keys)
                    ]
                )
            )
            .order_by(*record_lock_order())
            .with_for_update()
        )
        .scalars()
        .all()
    )
    return {(r.product_id, r.variant_key, r.location_id): r for r in rows}


def revert_delivery(db: Session, quotation_id: str) -> DeliveryResult:
    """
    Rejoue à l'envers exactement les DELIVERY_OUT du devis : même location,
    même quantité, jamais de réallocation. Le devis redevient accepté non
    livré, donc les quantités recréditées sont de nouveau réservées.
    """
    with atomic(db, "revert_delivery"):
        q = lock_quotation(db, quotation_id)
        if q.delivery_status != DeliveryStatus.delivered:
            raise NotDeliveredError(f"quotation {quotation_id} is not delivered")

        outs = outstanding_delivery_movements(db, q.id)
        records = _lock_records_for_movements(db, outs)

        correlation_id = str(uuid.uuid4())
        movements = []
        credited: dict[int, int] = defaultdict(int)
        for out in outs:
            key = (out.product_id, variant_key(out.variant_id), out.source_location_id)
            rec = records.get(key)
            if rec is None:
                # record vide supprimé depuis : on le recrée au même slot
                get_slot(db, out.source_location_id, lock=True)
                rec = create_record(
                    db,
                    product_id=out.product_id,
                    variant_id=out.variant_id,
                    location_id=out.source_location_id,
                    variant_name=out.variant_name,
                )
                records[key] = rec

            qty = -out.quantity
            rec.quantity += qty
            credited[rec.id] += qty
            movements.append(
                append_movement(
                    db,
                    movement_type=MovementType.delivery_revert,
                    record=rec,
                    quantity=qty,
                    target_location_id=out.source_location_id,
                    reference=_reference(q),
                    quotation_id=q.id,
                    correlation_id=correlation_id,
                    reversal_of_id=out.id,
                )
            )

        if q.offer_status == OfferStatus.accepted and not q.is_archived:
            by_id = {rec.id: rec for rec in records.values()}
            for record_id, qty in credited.items():
                add_reservation(db, q.id, by_id[record_id], qty)

        q.delivery_status = DeliveryStatus.none
        q.delivered_at = None

    logger.info(f"[revert_delivery] quotation={quotation_id} reverted={len(movements)} correlation={correlation_id}")
    return DeliveryResult(quotation=q, movements=movements)
