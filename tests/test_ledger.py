from contextlib import contextmanager
from dataclasses import FrozenInstanceError
from datetime import date, datetime, time, timezone

import psycopg
import pytest

from state.errors import NotFoundError, StorageError
from state.ledger import InMemoryVisitLedger, PostgresVisitLedger
from state.models import ADMITTED, REJECTED, OUTSIDE_VISITING_HOURS, TimeSlot, VisitRecord

DAY = date(2024, 6, 10)


def record(inmate="I1", visitor="V1", day=DAY, decision=ADMITTED, minute=0, reason=None) -> VisitRecord:
    return VisitRecord(
        inmate_id=inmate,
        visitor_id=visitor,
        date=day,
        slot=TimeSlot(time(10, 0), time(10, 30)),
        decision=decision,
        reason=reason,
        decided_at=datetime(2024, 6, 1, 9, minute, tzinfo=timezone.utc),
    )


def test_append_assigns_sequential_ids():
    ledger = InMemoryVisitLedger()
    a = ledger.append(record())
    b = ledger.append(record(visitor="V2", decision=REJECTED, reason=OUTSIDE_VISITING_HOURS))
    assert (a.id, b.id) == (1, 2)
    assert ledger.count() == 2
    assert ledger.get(2) == b


def test_records_are_immutable():
    stored = InMemoryVisitLedger().append(record())
    with pytest.raises(FrozenInstanceError):
        stored.decision = REJECTED


def test_get_unknown_record():
    with pytest.raises(NotFoundError):
        InMemoryVisitLedger().get(1)


def test_queries_filter_and_order_by_decision_time():
    ledger = InMemoryVisitLedger()
    late = ledger.append(record(minute=30))
    early = ledger.append(record(visitor="V2", minute=5))
    ledger.append(record(inmate="I2", day=date(2024, 6, 11), minute=45))
    assert ledger.find_by_inmate_and_date("I1", DAY) == [early, late]
    assert ledger.find_by_visitor_and_inmate_and_date("V2", "I1", DAY) == [early]
    assert [r.inmate_id for r in ledger.find_by_visitor("V1")] == ["I1", "I2"]
    assert len(ledger.find_by_inmate("I1")) == 2
    assert len(ledger.find_by_date_range(date(2024, 6, 11), date(2024, 6, 30))) == 1


class _RefusingPool:
    @contextmanager
    def connection(self):
        raise psycopg.OperationalError("connection refused")
        yield  # pragma: no cover


class _FakeCursor:
    def __init__(self, row):
        self.row = row
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.row


class _FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor

    @contextmanager
    def transaction(self):
        yield

    def cursor(self, **kwargs):
        return self._cursor


class _FakePool:
    def __init__(self, cursor):
        self._conn = _FakeConnection(cursor)

    @contextmanager
    def connection(self):
        yield self._conn


def test_postgres_append_returns_stored_id():
    cursor = _FakeCursor(row=(42,))
    ledger = PostgresVisitLedger(_FakePool(cursor))
    stored = ledger.append(record())
    assert stored.id == 42
    query, params = cursor.executed[0]
    assert "insert into visit_record" in query
    assert params[:3] == ("I1", "V1", DAY)


def test_postgres_failures_surface_as_storage_error():
    ledger = PostgresVisitLedger(_RefusingPool())
    with pytest.raises(StorageError):
        ledger.append(record())
    with pytest.raises(StorageError):
        ledger.find_by_inmate_and_date("I1", DAY)
    with pytest.raises(StorageError):
        ledger.count()
