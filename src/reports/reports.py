from __future__ import annotations
from collections import Counter
from datetime import date, datetime
from typing import Any, Dict, List
from rules.calendar_rules import format_visiting_hours
from state.models import ADMITTED, AUTH_ACTIVE, REJECTION_REASONS, VisitRecord


def summary(session, date_from: date, date_to: date, top: int = 5) -> Dict[str, Any]:
    """Visit statistics for a date range, inclusive on both ends."""
    records = session.ledger.find_by_date_range(date_from, date_to)
    admitted = [r for r in records if r.decision == ADMITTED]
    rejected = [r for r in records if r.decision != ADMITTED]
    by_reason = Counter(r.reason for r in rejected)
    per_day: Dict[str, Dict[str, int]] = {}
    for r in records:
        day = per_day.setdefault(r.date.isoformat(), {"admitted": 0, "rejected": 0})
        day["admitted" if r.decision == ADMITTED else "rejected"] += 1
    busiest = Counter(r.inmate_id for r in admitted).most_common(top)
    establishment = session.roster.establishment
    return {
        "establishment": establishment.name if establishment else None,
        "visiting_hours": format_visiting_hours(establishment) if establishment else None,
        "from": date_from.isoformat(),
        "to": date_to.isoformat(),
        "total": len(records),
        "admitted": len(admitted),
        "rejected": len(rejected),
        "rejections_by_reason": {code: by_reason.get(code, 0) for code in REJECTION_REASONS},
        "per_day": dict(sorted(per_day.items())),
        "busiest_inmates": [{"inmate_id": i, "admitted": n} for i, n in busiest],
    }


def _rows(records: List[VisitRecord]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in records]


def visits_by_inmate(session, inmate_id: str) -> Dict[str, Any]:
    inmate = session.roster.get_inmate(inmate_id)
    records = session.ledger.find_by_inmate(inmate_id)
    return {
        "inmate_id": inmate_id,
        "file_number": inmate.file_number if inmate else None,
        "name": inmate.full_name() if inmate else None,
        "location": inmate.location() if inmate else None,
        "visits": _rows(records),
    }


def visits_by_visitor(session, visitor_id: str) -> Dict[str, Any]:
    visitor = session.roster.get_visitor(visitor_id)
    records = session.ledger.find_by_visitor(visitor_id)
    return {
        "visitor_id": visitor_id,
        "national_id": visitor.national_id if visitor else None,
        "name": visitor.full_name() if visitor else None,
        "visits": _rows(records),
    }


def active_restrictions_report(session, at: datetime) -> List[Dict[str, Any]]:
    return [
        {
            "id": r.id,
            "kind": r.kind,
            "reason": r.reason,
            "inmate_id": r.inmate_id,
            "visitor_id": r.visitor_id,
            "starts_at": r.starts_at.isoformat(),
            "ends_at": r.ends_at.isoformat() if r.ends_at else None,
        }
        for r in session.restrictions.list_restrictions(active_only=True, at=at)
    ]


def active_authorizations_report(session, at: datetime) -> List[Dict[str, Any]]:
    rows = []
    for a in session.authorizations.list_authorizations(AUTH_ACTIVE):
        if not a.covers(at):
            continue
        rows.append(
            {
                "id": a.id,
                "inmate_id": a.inmate_id,
                "visitor_id": a.visitor_id,
                "relationship": a.relationship,
                "valid_from": a.valid_from.isoformat(),
                "valid_until": a.valid_until.isoformat() if a.valid_until else None,
            }
        )
    return rows


def expiring_soon(session, now: datetime, days: int = 30) -> Dict[str, List[Dict[str, Any]]]:
    """Authorizations and restrictions whose end falls within ``days`` of ``now``."""
    return {
        "authorizations": [
            {"id": a.id, "inmate_id": a.inmate_id, "visitor_id": a.visitor_id, "valid_until": a.valid_until.isoformat()}
            for a in session.authorizations.expiring_within(days, now)
        ],
        "restrictions": [
            {"id": r.id, "inmate_id": r.inmate_id, "visitor_id": r.visitor_id, "ends_at": r.ends_at.isoformat()}
            for r in session.restrictions.expiring_within(days, now)
        ],
    }
