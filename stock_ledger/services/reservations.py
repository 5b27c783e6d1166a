"""
Reservation tracker.

Seuls les devis acceptés et non livrés réservent du stock. La réservation est
posée à l'acceptation (au mieux du disponible, elle ne bloque jamais
l'acceptation) et levée au refus, au retour en pending, à l'archivage ou à la
livraison.

Ordre des verrous : la ligne du devis d'abord, puis les StockRecord dans
l'ordre (location_id, product_id, variant_key).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from stock_ledger.app.db.models.core_types import DeliveryStatus, OfferStatus
from stock_ledger.app.db.models.models_v1 import Quotation, StockRecord, StockReservation
from stock_ledger.services.errors import (
    AlreadyDeliveredError,
    NotFoundError,
    QuotationStateError,
    ValidationError,
)
from stock_ledger.services.inventory import (
    increase_reserved,
    record_lock_order,
    release_reserved,
    variant_key,
)
from stock_ledger.services.transaction import atomic

logger = logging.getLogger(__name__)


@dataclass
class LineDemand:
    product_id: str
    variant_id: str | None
    variant_name: str | None
    quantity: int

    @property
    def key(self) -> tuple[str, str]:
        return (self.product_id, variant_key(self.variant_id))


# ---------- Helpers ----------
def lock_quotation(db: Session, quotation_id: str) -> Quotation:
    q = (
        db.execute(select(Quotation).where(Quotation.id == quotation_id).with_for_update())
        .scalar_one_or_none()
    )
    if not q:
        raise NotFoundError(f"quotation {quotation_id} not found")
    return q


def line_demands(quotation: Quotation) -> dict[tuple[str, str], LineDemand]:
    """Lignes du devis regroupées par (produit, variante)."""
    demands: dict[tuple[str, str], LineDemand] = {}
    for line in quotation.lines:
        if not (line.product_id or "").strip():
            raise ValidationError(f"quotation {quotation.id} has a line without product_id")
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(
                f"quotation {quotation.id} has a non-positive quantity for product {line.product_id}"
            )
        demand = LineDemand(
            product_id=line.product_id,
            variant_id=variant_key(line.variant_id) or None,
            variant_name=line.variant_name,
            quantity=int(line.quantity),
        )
        if demand.key in demands:
            demands[demand.key].quantity += demand.quantity
        else:
            demands[demand.key] = demand

    if not demands:
        raise ValidationError(f"quotation {quotation.id} has no line items")
    return demands


def quotation_reservations(db: Session, quotation_id: str) -> list[StockReservation]:
    return list(
        db.execute(
            select(StockReservation)
            .where(StockReservation.quotation_id == quotation_id)
            .order_by(StockReservation.stock_record_id)
        )
        .scalars()
        .all()
    )


def lock_candidate_records(
    db: Session,
    keys: list[tuple[str, str]],
    extra_record_ids: list[int] | None = None,
) -> tuple[dict[tuple[str, str], list[StockRecord]], dict[int, StockRecord]]:
    """
    Verrouille en une requête (ordre stable) tous les records des produits
    demandés, plus quelques ids supplémentaires.

    Retourne ({clé produit: records triés FIFO}, {record_id: record}).
    """
    clauses = [
        and_(StockRecord.product_id == product_id, StockRecord.variant_key == vkey)
        for product_id, vkey in keys
    ]
    if extra_record_ids:
        clauses.append(StockRecord.id.in_(sorted(extra_record_ids)))
    if not clauses:
        return {}, {}

    rows = (
        db.execute(
            select(StockRecord)
            .where(or_(*clauses))
            .order_by(*record_lock_order())
            .with_for_update()
        )
        .scalars()
        .all()
    )

    by_key: dict[tuple[str, str], list[StockRecord]] = {key: [] for key in keys}
    by_id: dict[int, StockRecord] = {}
    for rec in rows:
        by_id[rec.id] = rec
        key = (rec.product_id, rec.variant_key)
        if key in by_key:
            by_key[key].append(rec)
    for recs in by_key.values():
        # FIFO : le record créé en premier (premier stock-in) sort en premier
        recs.sort(key=lambda r: r.id)
    return by_key, by_id


# ---------- Tracker ----------
def reserve_for_quotation(db: Session, quotation: Quotation) -> list[dict]:
    """
    Réserve pour chaque ligne jusqu'au disponible, en FIFO.
    Appelé dans la transaction de l'appelant, devis déjà verrouillé.
    """
    demands = line_demands(quotation)
    candidates, _ = lock_candidate_records(db, list(demands))

    summary = []
    for key, demand in demands.items():
        remaining = demand.quantity
        for rec in candidates[key]:
            take = min(rec.available, remaining)
            if take <= 0:
                continue
            increase_reserved(rec, take)
            db.add(StockReservation(quotation_id=quotation.id, stock_record_id=rec.id, quantity=take))
            remaining -= take
            if remaining == 0:
                break

        summary.append(
            {
                "product_id": demand.product_id,
                "variant_id": demand.variant_id,
                "requested": demand.quantity,
                "reserved": demand.quantity - remaining,
                "shortfall": remaining,
            }
        )
    db.flush()
    return summary


def release_for_quotation(db: Session, quotation_id: str) -> int:
    """Lève toutes les réservations du devis. Retourne la quantité libérée."""
    reservations = quotation_reservations(db, quotation_id)
    if not reservations:
        return 0

    _, records = lock_candidate_records(db, [], [r.stock_record_id for r in reservations])
    released = 0
    for res in reservations:
        release_reserved(records[res.stock_record_id], res.quantity)
        released += res.quantity
        db.delete(res)
    db.flush()
    return released


def add_reservation(db: Session, quotation_id: str, rec: StockRecord, quantity: int) -> None:
    """Ajoute (ou complète) la réservation du devis sur un record verrouillé."""
    increase_reserved(rec, quantity)
    res = db.execute(
        select(StockReservation)
        .where(StockReservation.quotation_id == quotation_id)
        .where(StockReservation.stock_record_id == rec.id)
    ).scalar_one_or_none()
    if res:
        res.quantity += quantity
    else:
        db.add(StockReservation(quotation_id=quotation_id, stock_record_id=rec.id, quantity=quantity))
    db.flush()


# ---------- Changements de statut externes ----------
def set_offer_status(db: Session, quotation_id: str, offer_status: OfferStatus) -> dict:
    offer_status = OfferStatus(offer_status)

    with atomic(db, "set_offer_status"):
        q = lock_quotation(db, quotation_id)
        if q.delivery_status == DeliveryStatus.delivered:
            raise AlreadyDeliveredError(f"quotation {quotation_id} is delivered, revert the delivery first")
        if q.is_archived and offer_status == OfferStatus.accepted:
            raise QuotationStateError(f"quotation {quotation_id} is archived")

        previous = q.offer_status
        released = 0
        lines: list[dict] = []
        if previous != offer_status:
            if previous == OfferStatus.accepted:
                released = release_for_quotation(db, q.id)
            q.offer_status = offer_status
            if offer_status == OfferStatus.accepted:
                lines = reserve_for_quotation(db, q)

    logger.info(
        f"[set_offer_status] quotation={quotation_id} {previous.value}->{offer_status.value} released={released}"
    )
    return {
        "quotation_id": quotation_id,
        "offer_status": offer_status,
        "previous_status": previous,
        "released": released,
        "reservations": lines,
    }


def archive_quotation(db: Session, quotation_id: str) -> dict:
    with atomic(db, "archive_quotation"):
        q = lock_quotation(db, quotation_id)
        if q.delivery_status == DeliveryStatus.delivered:
            raise AlreadyDeliveredError(f"quotation {quotation_id} is delivered, revert the delivery first")
        released = release_for_quotation(db, q.id)
        q.is_archived = True

    logger.info(f"[archive_quotation] quotation={quotation_id} released={released}")
    return {"quotation_id": quotation_id, "is_archived": True, "released": released}
