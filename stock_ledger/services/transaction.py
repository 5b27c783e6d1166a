from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from stock_ledger.services.errors import ConcurrencyError, LedgerError

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
LOCK_FAILURE_PGCODES = {"55P03", "40P01", "40001"}


def is_lock_failure(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if pgcode in LOCK_FAILURE_PGCODES:
        return True
    # SQLite : un seul writer, les autres reçoivent "database is locked"
    return "database is locked" in str(orig or exc).lower()


@contextmanager
def atomic(db: Session, operation: str) -> Iterator[Session]:
    """
    Une opération du ledger = une transaction.

    - succès : commit
    - erreur métier : rollback puis on relance telle quelle
    - timeout / deadlock sur un verrou : rollback puis ConcurrencyError
    Aucune écriture partielle ne survit à un échec.
    """
    try:
        yield db
        db.commit()
    except LedgerError as e:
        db.rollback()
        logger.warning(f"[{operation}] rejected: {e.message}")
        raise
    except OperationalError as e:
        db.rollback()
        if is_lock_failure(e):
            logger.warning(f"[{operation}] lock wait failed: {e.orig}")
            raise ConcurrencyError(f"Ledger busy during {operation}, retry later") from e
        raise
    except Exception:
        db.rollback()
        raise
