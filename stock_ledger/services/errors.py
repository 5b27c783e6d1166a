"""
Erreurs typées du ledger.

Le coeur ne lève que ces erreurs ; la présentation (HTTP, messages UI) est
faite par l'appelant. Chaque erreur porte un status HTTP et un code machine,
utilisés par le handler FastAPI de main.py.
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationError(LedgerError):
    status_code = 400
    code = "validation_error"


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"


class ConflictError(LedgerError):
    status_code = 409
    code = "conflict"


class InsufficientStockError(LedgerError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        *,
        product_id: str,
        variant_id: str | None,
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient available stock for product {product_id}"
            f"{'/' + variant_id if variant_id else ''} "
            f"(requested={requested}, available={available})",
            product_id=product_id,
            variant_id=variant_id,
            requested=requested,
            available=available,
            shortfall=self.shortfall,
        )


class ReservationViolationError(LedgerError):
    status_code = 409
    code = "reservation_violation"


class QuotationStateError(LedgerError):
    status_code = 409
    code = "invalid_quotation_state"


class NotAcceptedError(QuotationStateError):
    code = "not_accepted"


class AlreadyDeliveredError(QuotationStateError):
    code = "already_delivered"


class NotDeliveredError(QuotationStateError):
    code = "not_delivered"


class ConcurrencyError(LedgerError):
    status_code = 503
    code = "busy"
