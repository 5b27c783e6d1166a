from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from stock_ledger.app.api.deps import get_db
from stock_ledger.app.db.models.core_types import OfferStatus
from stock_ledger.app.schemas.stock import MovementRead
from stock_ledger.services import delivery, reservations

router = APIRouter(prefix="/quotations")


class StatusUpdate(BaseModel):
    offer_status: OfferStatus


def _delivery_response(result: delivery.DeliveryResult) -> dict:
    q = result.quotation
    return {
        "quotation_id": q.id,
        "offer_status": q.offer_status,
        "delivery_status": q.delivery_status,
        "delivered_at": q.delivered_at,
        "movements": [MovementRead.model_validate(mv) for mv in result.movements],
    }


@router.patch("/{quotation_id}/status")
def update_status(quotation_id: str, payload: StatusUpdate, db: Session = Depends(get_db)):
    """
    Statut d'offre piloté par le module ventes.
    accepted -> réserve le stock, sortie d'accepted -> libère.
    """
    return reservations.set_offer_status(db, quotation_id, payload.offer_status)


@router.post("/{quotation_id}/archive")
def archive(quotation_id: str, db: Session = Depends(get_db)):
    return reservations.archive_quotation(db, quotation_id)


@router.post("/{quotation_id}/deliver")
def deliver(quotation_id: str, db: Session = Depends(get_db)):
    return _delivery_response(delivery.deliver(db, quotation_id))


@router.post("/{quotation_id}/revert-delivery")
def revert_delivery(quotation_id: str, db: Session = Depends(get_db)):
    return _delivery_response(delivery.revert_delivery(db, quotation_id))
