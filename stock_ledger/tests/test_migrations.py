from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from stock_ledger.app.core.config import settings
from stock_ledger.app.db.models.models_v1 import Base

SCRIPT_LOCATION = Path(__file__).resolve().parents[1] / "alembic"


def test_upgrade_head_builds_the_model_schema(tmp_path, monkeypatch):
    """
    GIVEN une base SQLite vide, DATABASE_URL pointant dessus
    WHEN alembic upgrade head
    THEN mêmes tables et colonnes que les modèles
    """
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setattr(settings, "database_url", url)
    cfg = Config()
    cfg.set_main_option("script_location", str(SCRIPT_LOCATION))

    command.upgrade(cfg, "head")

    eng = create_engine(url)
    try:
        insp = inspect(eng)
        assert set(insp.get_table_names()) == set(Base.metadata.tables) | {"alembic_version"}
        for name, table in Base.metadata.tables.items():
            assert {c["name"] for c in insp.get_columns(name)} == set(table.columns.keys())
    finally:
        eng.dispose()
