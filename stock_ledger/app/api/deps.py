from __future__ import annotations

from typing import Generator

from sqlalchemy.orm import Session

from stock_ledger.app.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Une session par requête. Commit / rollback : services.transaction.atomic."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
