from __future__ import annotations
from typing import Dict, List, Optional, Any
import logging
import threading
import psycopg
from psycopg.rows import dict_row
from rules.calendar_rules import parse_visiting_days
from .authorizations import AuthorizationRegistry
from .errors import ConflictError, NotFoundError, StorageError
from .models import (
    ACTIVE,
    INACTIVE,
    Authorization,
    Establishment,
    Inmate,
    Restriction,
    Visitor,
)
from .restrictions import RestrictionIndex


class InMemoryRoster:
    """Establishment, inmates and visitors known to the session.

    Fed by the intake process (seed or database loader); the scheduler only
    reads from it.
    """

    def __init__(self, establishment: Optional[Establishment] = None):
        self.establishment = establishment
        self.inmates: Dict[str, Inmate] = {}
        self.visitors: Dict[str, Visitor] = {}
        self._inmates_by_file: Dict[str, str] = {}
        self._visitors_by_national_id: Dict[str, str] = {}
        self._lock = threading.RLock()

    # Establishment
    def set_establishment(self, establishment: Establishment):
        with self._lock:
            self.establishment = establishment

    def get_establishment(self) -> Establishment:
        if self.establishment is None:
            raise NotFoundError("no establishment loaded")
        return self.establishment

    # Inmates
    def save_inmate(self, inmate: Inmate) -> Inmate:
        with self._lock:
            owner = self._inmates_by_file.get(inmate.file_number)
            if owner and owner != inmate.id:
                raise ConflictError(f"file number {inmate.file_number} already belongs to inmate {owner}")
            previous = self.inmates.get(inmate.id)
            if previous and previous.file_number != inmate.file_number:
                self._inmates_by_file.pop(previous.file_number, None)
            self.inmates[inmate.id] = inmate
            self._inmates_by_file[inmate.file_number] = inmate.id
            return inmate

    def get_inmate(self, inmate_id: str) -> Optional[Inmate]:
        return self.inmates.get(inmate_id)

    def find_inmate_by_file_number(self, file_number: str) -> Optional[Inmate]:
        inmate_id = self._inmates_by_file.get(file_number)
        return self.inmates.get(inmate_id) if inmate_id else None

    def set_inmate_status(self, inmate_id: str, status: str) -> Inmate:
        with self._lock:
            inmate = self.inmates.get(inmate_id)
            if inmate is None:
                raise NotFoundError(f"inmate {inmate_id} not found")
            inmate.status = status
            return inmate

    def list_inmates(self, status: Optional[str] = None) -> List[Inmate]:
        with self._lock:
            inmates = [i for i in self.inmates.values() if status is None or i.status == status]
        inmates.sort(key=lambda i: (i.block, i.floor, i.file_number))
        return inmates

    # Visitors
    def save_visitor(self, visitor: Visitor) -> Visitor:
        with self._lock:
            owner = self._visitors_by_national_id.get(visitor.national_id)
            if owner and owner != visitor.id:
                raise ConflictError(f"national id {visitor.national_id} already belongs to visitor {owner}")
            previous = self.visitors.get(visitor.id)
            if previous and previous.national_id != visitor.national_id:
                self._visitors_by_national_id.pop(previous.national_id, None)
            self.visitors[visitor.id] = visitor
            self._visitors_by_national_id[visitor.national_id] = visitor.id
            return visitor

    def get_visitor(self, visitor_id: str) -> Optional[Visitor]:
        return self.visitors.get(visitor_id)

    def find_visitor_by_national_id(self, national_id: str) -> Optional[Visitor]:
        visitor_id = self._visitors_by_national_id.get(national_id)
        return self.visitors.get(visitor_id) if visitor_id else None

    def set_visitor_status(self, visitor_id: str, status: str) -> Visitor:
        with self._lock:
            visitor = self.visitors.get(visitor_id)
            if visitor is None:
                raise NotFoundError(f"visitor {visitor_id} not found")
            visitor.status = status
            return visitor

    def list_visitors(self, status: Optional[str] = None) -> List[Visitor]:
        with self._lock:
            visitors = [v for v in self.visitors.values() if status is None or v.status == status]
        visitors.sort(key=lambda v: v.national_id)
        return visitors


# Statuses used by the intake tables that are not ACTIVE all block visits
def _party_status(raw: Optional[str]) -> str:
    return ACTIVE if (raw or "").upper() in (ACTIVE, "ACTIVO") else INACTIVE


def load_from_postgres(
    conninfo: str,
    roster: InMemoryRoster,
    authorizations: AuthorizationRegistry,
    restrictions: RestrictionIndex,
    *,
    establishment_id: Optional[str] = None,
) -> Dict[str, int]:
    """Read the establishment session's rows from Postgres into memory.

    Returns row counts per table. Driver errors surface as ``StorageError``.
    """
    logger = logging.getLogger("state.loader")
    counts: Dict[str, int] = {}
    try:
        with psycopg.connect(conninfo) as conn, conn.cursor(row_factory=dict_row) as cur:
            if establishment_id:
                cur.execute("select * from establishment where id = %s", (establishment_id,))
            else:
                cur.execute("select * from establishment where active order by id limit 1")
            row = cur.fetchone()
            if not row:
                raise NotFoundError("no active establishment row found")
            establishment = Establishment(
                id=str(row["id"]),
                name=row["name"],
                visiting_days=parse_visiting_days(row["visiting_days"]),
                start=row["start_time"],
                end=row["end_time"],
                visit_policy=(row.get("visit_policy") or "ONE_PER_DAY").upper(),
                modality=row.get("modality") or "MIXTA",
                active=row["active"],
                max_concurrent_visits=row.get("max_concurrent_visits") or None,
            )
            roster.set_establishment(establishment)

            cur.execute("select * from inmate where establishment_id = %s", (establishment.id,))
            inmate_rows: List[Dict[str, Any]] = cur.fetchall()
            for r in inmate_rows:
                roster.save_inmate(
                    Inmate(
                        id=str(r["id"]),
                        file_number=r["file_number"],
                        block=r["block"],
                        floor=r["floor"],
                        status=_party_status(r["status"]),
                        first_name=r["first_name"],
                        last_name=r["last_name"],
                        admitted_on=r["admitted_on"],
                    )
                )
            counts["inmate"] = len(inmate_rows)

            cur.execute("select * from visitor")
            visitor_rows = cur.fetchall()
            for r in visitor_rows:
                roster.save_visitor(
                    Visitor(
                        id=str(r["id"]),
                        national_id=r["national_id"],
                        status=_party_status(r["status"]),
                        first_name=r["first_name"],
                        last_name=r["last_name"],
                        phone=r["phone"],
                    )
                )
            counts["visitor"] = len(visitor_rows)

            cur.execute("select * from visit_authorization order by id")
            auth_rows = cur.fetchall()
            for r in auth_rows:
                authorizations.load(
                    Authorization(
                        id=r["id"],
                        inmate_id=str(r["inmate_id"]),
                        visitor_id=str(r["visitor_id"]),
                        valid_from=r["valid_from"],
                        valid_until=r["valid_until"],
                        status=r["status"],
                        relationship=r["relationship"],
                        granted_by=r["granted_by"],
                        notes=r["notes"],
                        created_at=r["created_at"],
                    )
                )
            counts["visit_authorization"] = len(auth_rows)

            cur.execute("select * from visit_restriction order by id")
            restriction_rows = cur.fetchall()
            for r in restriction_rows:
                restrictions.load(
                    Restriction(
                        id=r["id"],
                        reason=r["reason"],
                        starts_at=r["starts_at"],
                        ends_at=r["ends_at"],
                        inmate_id=str(r["inmate_id"]) if r["inmate_id"] else None,
                        visitor_id=str(r["visitor_id"]) if r["visitor_id"] else None,
                        kind=r["kind"],
                        status=r["status"],
                        created_by=r["created_by"],
                        created_at=r["created_at"],
                    )
                )
            counts["visit_restriction"] = len(restriction_rows)
    except psycopg.Error as exc:
        logger.exception("Unable to load establishment session from Postgres")
        raise StorageError(f"session load failed: {exc}") from exc
    logger.info("Loaded establishment %s from Postgres: %s", roster.establishment.id, counts)
    return counts
