from __future__ import annotations
from datetime import date, datetime
from typing import Callable, Optional, Tuple
import logging
import time as _time
from observability import metrics
from observability.logging import structured_log
from rules.calendar_rules import format_visiting_hours, is_within_visiting_window, validate_slot
from state.authorizations import AuthorizationRegistry
from state.errors import InvalidInputError
from state.event_log import EventLog
from state.ledger import InMemoryVisitLedger, PostgresVisitLedger
from state.locks import ShardLockTable, establishment_shard, shard_for
from state.models import (
    ACTIVE,
    ADMITTED,
    REJECTED,
    PARTY_INACTIVE,
    OUTSIDE_VISITING_HOURS,
    NOT_AUTHORIZED,
    RESTRICTED,
    DUPLICATE_OR_CONFLICT,
    CAPACITY_REACHED,
    VisitRecord,
    VisitRequest,
    new_id,
    _now,
)
from state.repository import InMemoryRoster
from state.restrictions import RestrictionIndex
from .policy import check_policy, describe_conflict, find_conflict

logger = logging.getLogger("visits.scheduler")


Verdict = Tuple[Optional[str], Optional[str]]  # (reason code, detail); (None, None) admits


class VisitScheduler:
    """Admits or rejects visit requests for one establishment.

    Checks run in a fixed order and the first failing one names the
    rejection. Evaluation and the ledger append for a request happen while
    holding the requested inmate's lock, so two requests for the same inmate
    never both see a ledger without the other's admission. With a capacity
    limit, the final count and append also hold the establishment lock,
    always taken after the inmate lock.
    """

    def __init__(
        self,
        roster: InMemoryRoster,
        authorizations: AuthorizationRegistry,
        restrictions: RestrictionIndex,
        ledger: InMemoryVisitLedger | PostgresVisitLedger,
        *,
        locks: Optional[ShardLockTable] = None,
        event_log: Optional[EventLog] = None,
        policy: Optional[str] = None,
        default_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _now,
    ):
        self.roster = roster
        self.authorizations = authorizations
        self.restrictions = restrictions
        self.ledger = ledger
        self.locks = locks if locks is not None else ShardLockTable()
        self.event_log = event_log or EventLog()
        self._policy = check_policy(policy) if policy else None
        self.default_timeout = default_timeout
        self._clock = clock

    @property
    def policy(self) -> str:
        if self._policy:
            return self._policy
        return check_policy(self.roster.get_establishment().visit_policy)

    def evaluate(
        self,
        request: VisitRequest,
        timeout: Optional[float] = None,
        *,
        correlation_id: Optional[str] = None,
        actor: str = "system",
    ) -> VisitRecord:
        _validate_request(request)
        cid = correlation_id or new_id()
        shard = shard_for(request.inmate_id)
        wait = self.default_timeout if timeout is None else timeout
        started = _time.monotonic()
        with self.locks.hold(shard, wait):
            reason, detail = self._decide(request)
            establishment = self.roster.get_establishment()
            limit = establishment.max_concurrent_visits
            if reason is None and limit:
                # capacity spans inmates: count and append under the establishment shard
                remaining = None if wait is None else wait - (_time.monotonic() - started)
                with self.locks.hold(establishment_shard(establishment.id), remaining):
                    reason, detail = self._check_capacity(request, limit)
                    stored = self.ledger.append(self._record(request, reason, detail))
            else:
                stored = self.ledger.append(self._record(request, reason, detail))
        elapsed_ms = round((_time.monotonic() - started) * 1000, 3)
        self._observe(stored, cid, actor, shard, elapsed_ms)
        return stored

    def _record(self, request: VisitRequest, reason: Optional[str], detail: Optional[str]) -> VisitRecord:
        return VisitRecord(
            inmate_id=request.inmate_id,
            visitor_id=request.visitor_id,
            date=request.date,
            slot=request.slot,
            decision=REJECTED if reason else ADMITTED,
            reason=reason,
            detail=detail,
            decided_at=self._clock(),
        )

    def _check_capacity(self, request: VisitRequest, limit: int) -> Verdict:
        """Admitted visits on the date whose slot overlaps the request must stay below ``limit``."""
        concurrent = [
            r
            for r in self.ledger.find_by_date_range(request.date, request.date)
            if r.admitted and r.slot.overlaps(request.slot)
        ]
        if len(concurrent) >= limit:
            return CAPACITY_REACHED, f"{len(concurrent)} of {limit} visits already admitted during {request.slot.label()}"
        return None, None

    def _decide(self, request: VisitRequest) -> Verdict:
        establishment = self.roster.get_establishment()

        inmate = self.roster.get_inmate(request.inmate_id)
        visitor = self.roster.get_visitor(request.visitor_id)
        if inmate is None or inmate.status != ACTIVE:
            return PARTY_INACTIVE, f"inmate {request.inmate_id} is missing or inactive"
        if visitor is None or visitor.status != ACTIVE:
            return PARTY_INACTIVE, f"visitor {request.visitor_id} is missing or inactive"

        if not is_within_visiting_window(establishment, request.date, request.slot):
            return OUTSIDE_VISITING_HOURS, f"visiting hours are {format_visiting_hours(establishment)}"

        moment = request.moment()
        if not self.authorizations.is_authorized(request.inmate_id, request.visitor_id, moment):
            return NOT_AUTHORIZED, f"no active authorization at {moment.isoformat()}"

        active = self.restrictions.active_restrictions(request.inmate_id, request.visitor_id, moment)
        if active:
            return RESTRICTED, active[0].reason

        records = self.ledger.find_by_inmate_and_date(request.inmate_id, request.date)
        conflict, kind = find_conflict(self.policy, request, records)
        if conflict is not None:
            return DUPLICATE_OR_CONFLICT, describe_conflict(conflict, kind)
        return None, None

    def _observe(self, record: VisitRecord, cid: str, actor: str, shard: str, elapsed_ms: float):
        if record.admitted:
            metrics.inc("visits.admitted")
        else:
            metrics.inc("visits.rejected")
            metrics.inc(f"visits.rejected.{record.reason}")
        data = record.to_dict()
        data["elapsed_ms"] = elapsed_ms
        self.event_log.log("visit_evaluated", cid, actor, shard, data)
        structured_log("visit_evaluated", cid, data)
        logger.debug("visit %s %s for inmate %s", record.id, record.decision, record.inmate_id)


def _validate_request(request: VisitRequest):
    if not isinstance(request, VisitRequest):
        raise InvalidInputError("expected a VisitRequest")
    if not request.inmate_id or not request.visitor_id:
        raise InvalidInputError("inmate_id and visitor_id are required")
    if not isinstance(request.date, date) or isinstance(request.date, datetime):
        raise InvalidInputError("requested date must be a calendar date")
    validate_slot(request.slot)
