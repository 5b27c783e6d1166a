import os

# avant tout import de l'app : l'engine global ne doit pas viser Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.app.api.deps import get_db
from stock_ledger.app.db.models.core_types import LocationKind, OfferStatus
from stock_ledger.app.db.models.models_v1 import Base, Quotation, QuotationLine
from stock_ledger.app.db.seed import seed_demo_hierarchy
from stock_ledger.app.db.session import configure_sqlite
from stock_ledger.app.main import app
from stock_ledger.services import locations as registry


@pytest.fixture(scope="function")
def engine():
    """
    Base SQLite en mémoire, neuve pour chaque test.

    StaticPool : une seule connexion partagée, sinon chaque connexion
    verrait une base vide.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(eng)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    # les services commitent eux-mêmes (atomic) : pas de SAVEPOINT englobant
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def warehouse(db_session):
    """WH1 / A / L1..L2 / S1..S3"""
    return seed_demo_hierarchy(db_session)


@pytest.fixture
def slots(db_session, warehouse):
    """Slots de WH1 dans l'ordre L1/S1, L1/S2, L1/S3, L2/S1, ..."""
    return registry.list_children(db_session, LocationKind.rack_slot)


@pytest.fixture
def make_quotation(db_session):
    """
    Devis créé directement en base (les devis appartiennent au module ventes).
    lines : [(product_id, quantity)] ou [(product_id, variant_id, quantity)].
    """

    def _make(quotation_id, lines, *, offer_status=OfferStatus.pending, number=None):
        q = Quotation(id=quotation_id, number=number, offer_status=offer_status)
        for line in lines:
            if len(line) == 2:
                product_id, quantity = line
                variant_id = None
            else:
                product_id, variant_id, quantity = line
            q.lines.append(QuotationLine(product_id=product_id, variant_id=variant_id, quantity=quantity))
        db_session.add(q)
        db_session.commit()
        return q.id

    return _make


@pytest.fixture
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
