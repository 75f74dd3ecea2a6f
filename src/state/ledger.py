from __future__ import annotations
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Tuple
import logging
import threading
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from .errors import NotFoundError, StorageError
from .models import TimeSlot, VisitRecord


def _ordered(records: List[VisitRecord]) -> List[VisitRecord]:
    return sorted(records, key=lambda r: (r.decided_at, r.id or 0))


class InMemoryVisitLedger:
    """Append-only visit ledger. Records are frozen and never replaced."""

    def __init__(self):
        self._records: List[VisitRecord] = []
        self._by_inmate_date: Dict[Tuple[str, date], List[VisitRecord]] = {}
        self._lock = threading.RLock()

    def append(self, record: VisitRecord) -> VisitRecord:
        with self._lock:
            stored = replace(record, id=len(self._records) + 1)
            self._records.append(stored)
            self._by_inmate_date.setdefault((stored.inmate_id, stored.date), []).append(stored)
            return stored

    def get(self, record_id: int) -> VisitRecord:
        with self._lock:
            if record_id < 1 or record_id > len(self._records):
                raise NotFoundError(f"visit record {record_id} not found")
            return self._records[record_id - 1]

    def find_by_inmate_and_date(self, inmate_id: str, day: date) -> List[VisitRecord]:
        with self._lock:
            return _ordered(list(self._by_inmate_date.get((inmate_id, day), [])))

    def find_by_visitor_and_inmate_and_date(self, visitor_id: str, inmate_id: str, day: date) -> List[VisitRecord]:
        return [r for r in self.find_by_inmate_and_date(inmate_id, day) if r.visitor_id == visitor_id]

    def find_by_inmate(self, inmate_id: str) -> List[VisitRecord]:
        with self._lock:
            return _ordered([r for r in self._records if r.inmate_id == inmate_id])

    def find_by_visitor(self, visitor_id: str) -> List[VisitRecord]:
        with self._lock:
            return _ordered([r for r in self._records if r.visitor_id == visitor_id])

    def find_by_date_range(self, date_from: date, date_to: date) -> List[VisitRecord]:
        with self._lock:
            return _ordered([r for r in self._records if date_from <= r.date <= date_to])

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class PostgresVisitLedger:
    """Ledger persisted to the ``visit_record`` table.

    Each append is one transaction. Driver errors surface as ``StorageError``;
    nothing is retried here.
    """

    _COLUMNS = "id, inmate_id, visitor_id, visit_date, slot_start, slot_end, decision, reason, detail, decided_at"

    def __init__(self, pool: ConnectionPool):
        self._pool = pool
        self._logger = logging.getLogger("state.ledger")

    @classmethod
    def from_conninfo(cls, conninfo: str) -> "PostgresVisitLedger":
        pool = ConnectionPool(
            conninfo,
            min_size=1,
            max_size=5,
            kwargs={"autocommit": True},
        )
        return cls(pool)

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> VisitRecord:
        return VisitRecord(
            id=row["id"],
            inmate_id=str(row["inmate_id"]),
            visitor_id=str(row["visitor_id"]),
            date=row["visit_date"],
            slot=TimeSlot(row["slot_start"], row["slot_end"]),
            decision=row["decision"],
            reason=row["reason"],
            detail=row["detail"],
            decided_at=row["decided_at"],
        )

    def _select(self, where: str, params: tuple) -> List[VisitRecord]:
        query = f"""
            select {self._COLUMNS}
            from visit_record
            where {where}
            order by decided_at, id
        """
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        except psycopg.Error as exc:
            self._logger.exception("Ledger query failed")
            raise StorageError(f"ledger query failed: {exc}") from exc
        return [self._row_to_record(row) for row in rows]

    def append(self, record: VisitRecord) -> VisitRecord:
        try:
            with self._pool.connection() as conn:
                with conn.transaction(), conn.cursor() as cur:
                    cur.execute(
                        """
                        insert into visit_record (
                            inmate_id,
                            visitor_id,
                            visit_date,
                            slot_start,
                            slot_end,
                            decision,
                            reason,
                            detail,
                            decided_at
                        )
                        values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        returning id
                        """,
                        (
                            record.inmate_id,
                            record.visitor_id,
                            record.date,
                            record.slot.start,
                            record.slot.end,
                            record.decision,
                            record.reason,
                            record.detail,
                            record.decided_at,
                        ),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            self._logger.exception("Ledger append failed")
            raise StorageError(f"ledger append failed: {exc}") from exc
        return replace(record, id=row[0])

    def get(self, record_id: int) -> VisitRecord:
        rows = self._select("id = %s", (record_id,))
        if not rows:
            raise NotFoundError(f"visit record {record_id} not found")
        return rows[0]

    def find_by_inmate_and_date(self, inmate_id: str, day: date) -> List[VisitRecord]:
        return self._select("inmate_id = %s and visit_date = %s", (inmate_id, day))

    def find_by_visitor_and_inmate_and_date(self, visitor_id: str, inmate_id: str, day: date) -> List[VisitRecord]:
        return self._select(
            "visitor_id = %s and inmate_id = %s and visit_date = %s",
            (visitor_id, inmate_id, day),
        )

    def find_by_inmate(self, inmate_id: str) -> List[VisitRecord]:
        return self._select("inmate_id = %s", (inmate_id,))

    def find_by_visitor(self, visitor_id: str) -> List[VisitRecord]:
        return self._select("visitor_id = %s", (visitor_id,))

    def find_by_date_range(self, date_from: date, date_to: date) -> List[VisitRecord]:
        return self._select("visit_date between %s and %s", (date_from, date_to))

    def count(self) -> int:
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute("select count(*) from visit_record")
                row = cur.fetchone()
        except psycopg.Error as exc:
            raise StorageError(f"ledger count failed: {exc}") from exc
        return int(row[0])

    def close(self):
        self._pool.close()
