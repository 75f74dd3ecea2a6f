from __future__ import annotations
from dataclasses import asdict
from datetime import date, datetime, time, timezone
import logging
import threading
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel
from authz.engine import can
from observability import metrics
from observability.logging import configure_logging, structured_log
from reports import reports
from scheduler.session import EstablishmentSession, build_session
from state.errors import (
    AlreadyLiftedError,
    ConflictError,
    EvaluationTimeoutError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    VisitEngineError,
)
from state.locks import shard_for
from state.models import TimeSlot, VisitRequest, new_id

configure_logging()
logger = logging.getLogger("visits.api")

app = FastAPI(title="Visit Authorization Engine")

_SESSION_LOCK = threading.Lock()

_ERROR_STATUS = (
    (InvalidInputError, 422),
    (NotFoundError, 404),
    (AlreadyLiftedError, 409),
    (ConflictError, 409),
    (StorageError, 503),
    (EvaluationTimeoutError, 504),
)


def get_session(request: Request) -> EstablishmentSession:
    """Session for this app, built from configuration on first use."""
    with _SESSION_LOCK:
        session = getattr(request.app.state, "session", None)
        if session is None:
            session = request.app.state.session = build_session()
        return session


def _http_error(exc: VisitEngineError) -> HTTPException:
    for cls, status in _ERROR_STATUS:
        if isinstance(exc, cls):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _require(actor_roles: list[str], action: str):
    allowed, reason = can(actor_roles, action)
    if not allowed:
        raise HTTPException(status_code=403, detail=reason)


def _audit(session: EstablishmentSession, kind: str, actor_id: str, inmate_id: str | None, data: dict) -> str:
    cid = new_id()
    shard = shard_for(inmate_id) if inmate_id else None
    session.event_log.log(kind, cid, actor_id, shard, data)
    structured_log(kind, cid, data)
    metrics.inc(kind)
    return cid


def _require_parties(session: EstablishmentSession, inmate_id: str | None, visitor_id: str | None):
    if inmate_id and session.roster.get_inmate(inmate_id) is None:
        raise HTTPException(status_code=404, detail=f"inmate {inmate_id} not found")
    if visitor_id and session.roster.get_visitor(visitor_id) is None:
        raise HTTPException(status_code=404, detail=f"visitor {visitor_id} not found")


class Actor(BaseModel):
    actor_id: str
    actor_roles: list[str]


class EvaluateRequest(Actor):
    inmate_id: str
    visitor_id: str
    visit_date: date
    start: time
    end: time
    timeout: float | None = None


class EvaluateResponse(BaseModel):
    correlation_id: str
    record: dict


class AdminResponse(BaseModel):
    correlation_id: str
    result: dict


class GrantRequest(Actor):
    inmate_id: str
    visitor_id: str
    valid_from: date
    valid_until: date | None = None
    relationship: str = "OTHER"
    notes: str | None = None


class ReasonRequest(Actor):
    reason: str | None = None


class RenewRequest(Actor):
    valid_until: date | None = None


class RestrictionRequest(Actor):
    reason: str
    starts_at: date
    ends_at: date | None = None
    inmate_id: str | None = None
    visitor_id: str | None = None
    kind: str = "ADMINISTRATIVE"


class ExtendRequest(Actor):
    ends_at: date | None = None


@app.post("/visits/evaluate", response_model=EvaluateResponse)
def evaluate_visit(req: EvaluateRequest, request: Request):
    _require(req.actor_roles, "visit.evaluate")
    session = get_session(request)
    cid = new_id()
    visit = VisitRequest(req.inmate_id, req.visitor_id, req.visit_date, TimeSlot(req.start, req.end))
    try:
        record = session.scheduler.evaluate(visit, req.timeout, correlation_id=cid, actor=req.actor_id)
    except VisitEngineError as exc:
        logger.warning("Evaluation failed for inmate %s: %s", req.inmate_id, exc)
        raise _http_error(exc) from exc
    return EvaluateResponse(correlation_id=cid, record=record.to_dict())


@app.get("/visits")
def list_visits(
    request: Request,
    actor_roles: list[str] = Query(default=[]),
    inmate_id: str | None = None,
    visitor_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    _require(actor_roles, "visit.read")
    ledger = get_session(request).ledger
    try:
        if inmate_id:
            records = ledger.find_by_inmate(inmate_id)
        elif visitor_id:
            records = ledger.find_by_visitor(visitor_id)
        elif date_from:
            records = ledger.find_by_date_range(date_from, date_to or date_from)
        else:
            raise HTTPException(status_code=422, detail="one of inmate_id, visitor_id or date_from is required")
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    if visitor_id:
        records = [r for r in records if r.visitor_id == visitor_id]
    if date_from:
        last = date_to or date_from
        records = [r for r in records if date_from <= r.date <= last]
    return {"visits": [r.to_dict() for r in records]}


@app.post("/authorizations", response_model=AdminResponse)
def grant_authorization(req: GrantRequest, request: Request):
    _require(req.actor_roles, "authorization.manage")
    session = get_session(request)
    _require_parties(session, req.inmate_id, req.visitor_id)
    try:
        auth = session.authorizations.grant(
            req.inmate_id,
            req.visitor_id,
            req.valid_from,
            req.valid_until,
            relationship=req.relationship,
            granted_by=req.actor_id,
            notes=req.notes,
        )
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    cid = _audit(session, "authorization.granted", req.actor_id, auth.inmate_id, {"authorization_id": auth.id})
    return AdminResponse(correlation_id=cid, result=asdict(auth))


def _authorization_action(request: Request, req: Actor, action: str, kind: str, apply) -> AdminResponse:
    _require(req.actor_roles, action)
    session = get_session(request)
    try:
        auth = apply(session.authorizations)
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    cid = _audit(session, kind, req.actor_id, auth.inmate_id, {"authorization_id": auth.id, "status": auth.status})
    return AdminResponse(correlation_id=cid, result=asdict(auth))


@app.post("/authorizations/{authorization_id}/revoke", response_model=AdminResponse)
def revoke_authorization(authorization_id: int, req: ReasonRequest, request: Request):
    return _authorization_action(
        request, req, "authorization.manage", "authorization.revoked",
        lambda registry: registry.revoke(authorization_id, req.reason),
    )


@app.post("/authorizations/{authorization_id}/suspend", response_model=AdminResponse)
def suspend_authorization(authorization_id: int, req: ReasonRequest, request: Request):
    return _authorization_action(
        request, req, "authorization.suspend", "authorization.suspended",
        lambda registry: registry.suspend(authorization_id, req.reason),
    )


@app.post("/authorizations/{authorization_id}/reactivate", response_model=AdminResponse)
def reactivate_authorization(authorization_id: int, req: Actor, request: Request):
    return _authorization_action(
        request, req, "authorization.manage", "authorization.reactivated",
        lambda registry: registry.reactivate(authorization_id),
    )


@app.post("/authorizations/{authorization_id}/renew", response_model=AdminResponse)
def renew_authorization(authorization_id: int, req: RenewRequest, request: Request):
    return _authorization_action(
        request, req, "authorization.manage", "authorization.renewed",
        lambda registry: registry.renew(authorization_id, req.valid_until),
    )


@app.post("/restrictions", response_model=AdminResponse)
def add_restriction(req: RestrictionRequest, request: Request):
    _require(req.actor_roles, "restriction.manage")
    session = get_session(request)
    _require_parties(session, req.inmate_id, req.visitor_id)
    try:
        restriction = session.restrictions.add_restriction(
            req.reason,
            req.starts_at,
            req.ends_at,
            inmate_id=req.inmate_id,
            visitor_id=req.visitor_id,
            kind=req.kind,
            created_by=req.actor_id,
        )
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    cid = _audit(session, "restriction.added", req.actor_id, restriction.inmate_id, {"restriction_id": restriction.id})
    return AdminResponse(correlation_id=cid, result=asdict(restriction))


@app.post("/restrictions/{restriction_id}/lift", response_model=AdminResponse)
def lift_restriction(restriction_id: int, req: ReasonRequest, request: Request):
    _require(req.actor_roles, "restriction.manage")
    session = get_session(request)
    try:
        restriction = session.restrictions.lift_restriction(restriction_id, req.reason)
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    cid = _audit(session, "restriction.lifted", req.actor_id, restriction.inmate_id, {"restriction_id": restriction.id})
    return AdminResponse(correlation_id=cid, result=asdict(restriction))


@app.post("/restrictions/{restriction_id}/extend", response_model=AdminResponse)
def extend_restriction(restriction_id: int, req: ExtendRequest, request: Request):
    _require(req.actor_roles, "restriction.manage")
    session = get_session(request)
    try:
        restriction = session.restrictions.extend_restriction(restriction_id, req.ends_at)
    except VisitEngineError as exc:
        raise _http_error(exc) from exc
    cid = _audit(session, "restriction.extended", req.actor_id, restriction.inmate_id, {"restriction_id": restriction.id})
    return AdminResponse(correlation_id=cid, result=asdict(restriction))


@app.get("/reports/summary")
def report_summary(
    request: Request,
    date_from: date,
    date_to: date,
    actor_roles: list[str] = Query(default=[]),
):
    _require(actor_roles, "report.read")
    if date_to < date_from:
        raise HTTPException(status_code=422, detail="date_to must not be before date_from")
    try:
        return reports.summary(get_session(request), date_from, date_to)
    except VisitEngineError as exc:
        raise _http_error(exc) from exc


@app.get("/reports/expiring")
def report_expiring(
    request: Request,
    days: int = 30,
    actor_roles: list[str] = Query(default=[]),
):
    _require(actor_roles, "report.read")
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return reports.expiring_soon(get_session(request), now, days)


@app.get("/metrics")
def metrics_snapshot():
    return metrics.snapshot()


@app.get("/health")
def health(request: Request):
    session = get_session(request)
    establishment = session.roster.establishment
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "establishment": establishment.id if establishment else None,
        "policy": establishment.visit_policy if establishment else None,
    }
