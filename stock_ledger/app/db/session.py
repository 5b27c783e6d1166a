from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from stock_ledger.app.core.config import settings

DATABASE_URL = settings.database_url


def engine_connect_args(url: str, lock_timeout_ms: int) -> dict:
    """
    Borne l'attente sur les verrous :
    - Postgres : lock_timeout de session (erreur 55P03 au lieu d'attendre)
    - SQLite : busy timeout du driver ("database is locked")
    """
    if url.startswith("postgresql"):
        return {"options": f"-c lock_timeout={int(lock_timeout_ms)}"}
    if url.startswith("sqlite"):
        return {"timeout": lock_timeout_ms / 1000, "check_same_thread": False}
    return {}


def configure_sqlite(engine) -> None:
    """
    SQLite n'a pas de verrou de ligne : FOR UPDATE est ignoré.

    pysqlite n'émet BEGIN qu'avant la première écriture, donc la lecture
    "verrouillée" se ferait hors transaction. On coupe ce BEGIN implicite et
    chaque transaction ouvre BEGIN IMMEDIATE : le verrou d'écriture est pris
    dès la première lecture, un seul writer à la fois, les autres attendent
    le busy timeout puis reçoivent "database is locked".
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_engine(
    DATABASE_URL,
    echo=settings.database_echo,
    pool_pre_ping=True,
    connect_args=engine_connect_args(DATABASE_URL, settings.lock_timeout_ms),
)
configure_sqlite(engine)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
