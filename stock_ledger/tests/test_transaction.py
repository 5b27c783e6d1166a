import pytest
from sqlalchemy.exc import OperationalError

from stock_ledger.app.db.session import engine_connect_args
from stock_ledger.services.errors import ConcurrencyError, NotFoundError
from stock_ledger.services.transaction import atomic, is_lock_failure


class _DriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class _RecordingSession:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _operational(message, sqlstate=None):
    return OperationalError("SELECT 1", {}, _DriverError(message, sqlstate))


@pytest.mark.parametrize("sqlstate", ["55P03", "40P01", "40001"])
def test_postgres_lock_failures_are_detected(sqlstate):
    assert is_lock_failure(_operational("canceling statement", sqlstate))


def test_sqlite_busy_is_a_lock_failure():
    assert is_lock_failure(_operational("database is locked"))
    assert not is_lock_failure(_operational("no such table: stock_records"))


def test_atomic_commits_on_success():
    db = _RecordingSession()

    with atomic(db, "noop"):
        pass

    assert (db.commits, db.rollbacks) == (1, 0)


def test_atomic_reraises_ledger_errors_after_rollback():
    db = _RecordingSession()

    with pytest.raises(NotFoundError):
        with atomic(db, "lookup"):
            raise NotFoundError("location 1 not found")

    assert (db.commits, db.rollbacks) == (0, 1)


def test_atomic_maps_lock_timeout_to_busy():
    db = _RecordingSession()

    with pytest.raises(ConcurrencyError) as exc:
        with atomic(db, "transfer"):
            raise _operational("lock timeout", "55P03")

    assert exc.value.status_code == 503
    assert exc.value.code == "busy"
    assert db.rollbacks == 1


def test_atomic_keeps_other_operational_errors():
    db = _RecordingSession()

    with pytest.raises(OperationalError):
        with atomic(db, "transfer"):
            raise _operational("server closed the connection unexpectedly")

    assert db.rollbacks == 1


def test_lock_timeout_connect_args():
    assert engine_connect_args("postgresql+psycopg://u:p@h/db", 2500) == {"options": "-c lock_timeout=2500"}
    assert engine_connect_args("sqlite://", 2500) == {"timeout": 2.5, "check_same_thread": False}
