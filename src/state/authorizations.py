from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
import threading
from .errors import ConflictError, InvalidInputError, NotFoundError
from .models import (
    Authorization,
    AUTH_ACTIVE,
    AUTH_REVOKED,
    AUTH_SUSPENDED,
    RELATIONSHIP_KINDS,
    _now,
    start_of,
    end_of,
)


class AuthorizationRegistry:
    def __init__(self, clock: Callable[[], datetime] = _now):
        self._clock = clock
        self._by_id: Dict[int, Authorization] = {}
        self._by_pair: Dict[Tuple[str, str], List[Authorization]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def _active_for_pair(self, inmate_id: str, visitor_id: str) -> Optional[Authorization]:
        for auth in self._by_pair.get((inmate_id, visitor_id), []):
            if auth.status == AUTH_ACTIVE:
                return auth
        return None

    def _store(self, auth: Authorization):
        self._by_id[auth.id] = auth
        self._by_pair.setdefault((auth.inmate_id, auth.visitor_id), []).append(auth)
        self._next_id = max(self._next_id, auth.id + 1)

    def grant(
        self,
        inmate_id: str,
        visitor_id: str,
        valid_from: date | datetime,
        valid_until: date | datetime | None = None,
        *,
        relationship: str = "OTHER",
        granted_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Authorization:
        if not inmate_id or not visitor_id:
            raise InvalidInputError("inmate_id and visitor_id are required")
        if relationship not in RELATIONSHIP_KINDS:
            raise InvalidInputError(f"unknown relationship: {relationship}")
        start = start_of(valid_from)
        end = end_of(valid_until)
        if end is not None and end < start:
            raise InvalidInputError("authorization cannot expire before it starts")
        with self._lock:
            existing = self._active_for_pair(inmate_id, visitor_id)
            if existing:
                raise ConflictError(
                    f"authorization {existing.id} already active for inmate {inmate_id} and visitor {visitor_id}"
                )
            auth = Authorization(
                id=self._next_id,
                inmate_id=inmate_id,
                visitor_id=visitor_id,
                valid_from=start,
                valid_until=end,
                relationship=relationship,
                granted_by=granted_by,
                notes=notes,
                created_at=self._clock(),
            )
            self._store(auth)
            return auth

    def load(self, auth: Authorization) -> Authorization:
        with self._lock:
            if auth.status == AUTH_ACTIVE and self._active_for_pair(auth.inmate_id, auth.visitor_id):
                raise ConflictError(f"duplicate active authorization for {auth.inmate_id}/{auth.visitor_id}")
            self._store(auth)
            return auth

    def get(self, authorization_id: int) -> Authorization:
        auth = self._by_id.get(authorization_id)
        if auth is None:
            raise NotFoundError(f"authorization {authorization_id} not found")
        return auth

    def revoke(self, authorization_id: int, reason: Optional[str] = None) -> Authorization:
        # revoking twice leaves the authorization revoked
        with self._lock:
            auth = self.get(authorization_id)
            auth.status = AUTH_REVOKED
            if reason:
                auth.notes = f"{auth.notes}\nREVOKED: {reason}" if auth.notes else f"REVOKED: {reason}"
            return auth

    def suspend(self, authorization_id: int, reason: Optional[str] = None) -> Authorization:
        with self._lock:
            auth = self.get(authorization_id)
            if auth.status != AUTH_ACTIVE:
                raise ConflictError(f"authorization {authorization_id} is {auth.status}, only ACTIVE can be suspended")
            auth.status = AUTH_SUSPENDED
            if reason:
                auth.notes = f"{auth.notes}\nSUSPENDED: {reason}" if auth.notes else f"SUSPENDED: {reason}"
            return auth

    def reactivate(self, authorization_id: int, at: Optional[datetime] = None) -> Authorization:
        with self._lock:
            auth = self.get(authorization_id)
            if auth.status != AUTH_SUSPENDED:
                raise ConflictError(f"authorization {authorization_id} is {auth.status}, only SUSPENDED can be reactivated")
            if auth.is_expired(at or self._clock().replace(tzinfo=None)):
                raise ConflictError(f"authorization {authorization_id} has expired; renew it first")
            if self._active_for_pair(auth.inmate_id, auth.visitor_id):
                raise ConflictError(f"another authorization is active for inmate {auth.inmate_id} and visitor {auth.visitor_id}")
            auth.status = AUTH_ACTIVE
            return auth

    def renew(self, authorization_id: int, valid_until: date | datetime | None) -> Authorization:
        with self._lock:
            auth = self.get(authorization_id)
            if auth.status == AUTH_REVOKED:
                raise ConflictError(f"authorization {authorization_id} is revoked")
            end = end_of(valid_until)
            if end is not None and end < auth.valid_from:
                raise InvalidInputError("authorization cannot expire before it starts")
            auth.valid_until = end
            return auth

    def is_authorized(self, inmate_id: str, visitor_id: str, at: datetime) -> bool:
        with self._lock:
            return any(
                a.status == AUTH_ACTIVE and a.covers(at)
                for a in self._by_pair.get((inmate_id, visitor_id), [])
            )

    def list_authorizations(self, status: Optional[str] = None) -> List[Authorization]:
        with self._lock:
            items = [a for a in self._by_id.values() if status is None or a.status == status]
        items.sort(key=lambda a: a.id)
        return items

    def authorized_inmates(self, visitor_id: str, at: datetime) -> List[str]:
        return [
            a.inmate_id
            for a in self.list_authorizations(AUTH_ACTIVE)
            if a.visitor_id == visitor_id and a.covers(at)
        ]

    def expiring_within(self, days: int, now: datetime) -> List[Authorization]:
        horizon = now + timedelta(days=days)
        return [
            a
            for a in self.list_authorizations(AUTH_ACTIVE)
            if a.valid_until is not None and now <= a.valid_until <= horizon
        ]
