from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional
import threading
from .errors import AlreadyLiftedError, InvalidInputError, NotFoundError
from .models import (
    Restriction,
    RESTRICTION_ACTIVE,
    RESTRICTION_LIFTED,
    RESTRICTION_KINDS,
    _now,
    start_of,
    end_of,
)


class RestrictionIndex:
    """Restrictions keyed by inmate and by visitor.

    Both maps hold the same ``Restriction`` objects; one targeting an inmate
    and a visitor is present in both. Lifted restrictions stay indexed for
    audit but never match ``active_restrictions``.
    """

    def __init__(self, clock: Callable[[], datetime] = _now):
        self._clock = clock
        self._by_id: Dict[int, Restriction] = {}
        self._by_inmate: Dict[str, Dict[int, Restriction]] = {}
        self._by_visitor: Dict[str, Dict[int, Restriction]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def _index(self, restriction: Restriction):
        self._by_id[restriction.id] = restriction
        if restriction.inmate_id:
            self._by_inmate.setdefault(restriction.inmate_id, {})[restriction.id] = restriction
        if restriction.visitor_id:
            self._by_visitor.setdefault(restriction.visitor_id, {})[restriction.id] = restriction
        self._next_id = max(self._next_id, restriction.id + 1)

    def add_restriction(
        self,
        reason: str,
        starts_at: date | datetime,
        ends_at: date | datetime | None = None,
        *,
        inmate_id: Optional[str] = None,
        visitor_id: Optional[str] = None,
        kind: str = "ADMINISTRATIVE",
        created_by: Optional[str] = None,
    ) -> Restriction:
        if not inmate_id and not visitor_id:
            raise InvalidInputError("restriction must target an inmate, a visitor or both")
        if not reason or not reason.strip():
            raise InvalidInputError("restriction reason is required")
        if kind not in RESTRICTION_KINDS:
            raise InvalidInputError(f"unknown restriction kind: {kind}")
        start = start_of(starts_at)
        end = end_of(ends_at)
        if end is not None and end < start:
            raise InvalidInputError("restriction cannot end before it starts")
        with self._lock:
            restriction = Restriction(
                id=self._next_id,
                reason=reason.strip(),
                starts_at=start,
                ends_at=end,
                inmate_id=inmate_id,
                visitor_id=visitor_id,
                kind=kind,
                created_by=created_by,
                created_at=self._clock(),
            )
            self._index(restriction)
            return restriction

    def load(self, restriction: Restriction) -> Restriction:
        """Index a restriction read from storage, keeping its id."""
        with self._lock:
            self._index(restriction)
            return restriction

    def get(self, restriction_id: int) -> Restriction:
        restriction = self._by_id.get(restriction_id)
        if restriction is None:
            raise NotFoundError(f"restriction {restriction_id} not found")
        return restriction

    def lift_restriction(self, restriction_id: int, reason: Optional[str] = None) -> Restriction:
        with self._lock:
            restriction = self.get(restriction_id)
            if restriction.status == RESTRICTION_LIFTED:
                raise AlreadyLiftedError(f"restriction {restriction_id} already lifted")
            restriction.status = RESTRICTION_LIFTED
            restriction.lifted_at = self._clock()
            restriction.lift_reason = reason
            return restriction

    def extend_restriction(self, restriction_id: int, ends_at: date | datetime | None) -> Restriction:
        with self._lock:
            restriction = self.get(restriction_id)
            if restriction.status == RESTRICTION_LIFTED:
                raise AlreadyLiftedError(f"restriction {restriction_id} already lifted")
            end = end_of(ends_at)
            if end is not None and end < restriction.starts_at:
                raise InvalidInputError("restriction cannot end before it starts")
            restriction.ends_at = end
            return restriction

    def active_restrictions(self, inmate_id: str, visitor_id: str, at: datetime) -> List[Restriction]:
        with self._lock:
            candidates: Dict[int, Restriction] = {}
            candidates.update(self._by_inmate.get(inmate_id, {}))
            candidates.update(self._by_visitor.get(visitor_id, {}))
            matches = [r for r in candidates.values() if r.is_active_at(at)]
        # newest first; ids ascending among equal creation times
        matches.sort(key=lambda r: r.id)
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches

    def list_restrictions(self, *, active_only: bool = False, at: Optional[datetime] = None) -> List[Restriction]:
        with self._lock:
            items = list(self._by_id.values())
        if active_only:
            moment = at or self._clock().replace(tzinfo=None)
            items = [r for r in items if r.is_active_at(moment)]
        items.sort(key=lambda r: r.id)
        return items

    def expiring_within(self, days: int, now: datetime) -> List[Restriction]:
        horizon = now + timedelta(days=days)
        return [
            r
            for r in self.list_restrictions()
            if r.status == RESTRICTION_ACTIVE and r.ends_at is not None and now <= r.ends_at <= horizon
        ]

    def count_active(self, at: datetime) -> int:
        return len(self.list_restrictions(active_only=True, at=at))
