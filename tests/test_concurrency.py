import threading
from datetime import date

import pytest

from state.errors import EvaluationTimeoutError
from state.locks import ShardLockTable, shard_for
from state.models import ADMITTED, CAPACITY_REACHED, DUPLICATE_OR_CONFLICT
from tests.fixtures import make_session, visit


def _race(session, requests):
    barrier = threading.Barrier(len(requests))
    results = []
    errors = []
    lock = threading.Lock()

    def worker(req):
        barrier.wait()
        try:
            record = session.scheduler.evaluate(req)
        except Exception as exc:  # surfaced below
            errors.append(exc)
            return
        with lock:
            results.append(record)

    threads = [threading.Thread(target=worker, args=(r,)) for r in requests]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert not errors, errors
    return results


def test_parallel_requests_for_one_inmate_admit_exactly_one(session):
    # visitors 01..09 may all visit inmate_001; visitor_10 is barred
    for n in range(2, 10):
        session.authorizations.grant("inmate_001", f"visitor_{n:02d}", date(2024, 1, 1))
    requests = [visit("inmate_001", f"visitor_{n:02d}") for n in range(1, 10)]
    results = _race(session, requests)
    admitted = [r for r in results if r.decision == ADMITTED]
    assert len(admitted) == 1
    assert all(r.reason == DUPLICATE_OR_CONFLICT for r in results if r.decision != ADMITTED)
    assert session.ledger.count() == len(requests)


def test_parallel_retries_of_one_request_admit_once(session):
    results = _race(session, [visit("inmate_001", "visitor_01") for _ in range(8)])
    assert sum(1 for r in results if r.decision == ADMITTED) == 1


def test_different_inmates_are_admitted_in_parallel(session):
    results = _race(session, [visit(f"inmate_{n:03d}", f"visitor_{n:02d}") for n in range(1, 9)])
    assert all(r.decision == ADMITTED for r in results)


def test_timeout_while_inmate_is_locked(session):
    shard = shard_for("inmate_001")
    assert session.locks.acquire(shard)
    try:
        with pytest.raises(EvaluationTimeoutError) as excinfo:
            session.scheduler.evaluate(visit("inmate_001", "visitor_01"), timeout=0.05)
        assert isinstance(excinfo.value, TimeoutError)
        # other inmates are unaffected
        other = session.scheduler.evaluate(visit("inmate_002", "visitor_02"), timeout=0.05)
        assert other.decision == ADMITTED
    finally:
        session.locks.release(shard)
    assert session.ledger.count() == 1
    assert session.scheduler.evaluate(visit("inmate_001", "visitor_01")).decision == ADMITTED


def test_lock_table_hold_releases_on_error():
    locks = ShardLockTable()
    with pytest.raises(RuntimeError):
        with locks.hold("Inmate:X", timeout=0.1):
            assert locks.is_locked("Inmate:X")
            raise RuntimeError("boom")
    assert not locks.is_locked("Inmate:X")


def test_parallel_requests_across_inmates_respect_capacity():
    session = make_session(capacity=3)
    results = _race(session, [visit(f"inmate_{n:03d}", f"visitor_{n:02d}") for n in range(1, 10)])
    assert sum(1 for r in results if r.decision == ADMITTED) == 3
    assert sum(1 for r in results if r.reason == CAPACITY_REACHED) == 6


def test_lock_table_drops_idle_shards(session):
    for n in range(200):
        session.scheduler.evaluate(visit(f"ghost_{n}", "visitor_01"))
    assert len(session.locks) == 0


def test_lock_table_keeps_shard_while_a_waiter_is_queued():
    locks = ShardLockTable()
    assert locks.acquire("Inmate:X")
    got = []

    def waiter():
        got.append(locks.acquire("Inmate:X", timeout=2))
        locks.release("Inmate:X")

    t = threading.Thread(target=waiter)
    t.start()
    locks.release("Inmate:X")
    t.join()
    assert got == [True]
    assert len(locks) == 0
