from __future__ import annotations
from typing import Iterable, Optional, Tuple
from state.errors import InvalidInputError
from state.models import (
    VisitRecord,
    VisitRequest,
    POLICY_NO_OVERLAP,
    POLICY_ONE_PER_DAY,
    VISIT_POLICIES,
)


def check_policy(policy: str) -> str:
    value = (policy or "").strip().upper()
    if value not in VISIT_POLICIES:
        raise InvalidInputError(f"unknown visit policy {policy!r}; expected one of {VISIT_POLICIES}")
    return value


def find_conflict(
    policy: str,
    request: VisitRequest,
    inmate_day_records: Iterable[VisitRecord],
) -> Tuple[Optional[VisitRecord], str]:
    """Return the first admitted record that blocks ``request`` and why.

    ``inmate_day_records`` are the ledger records for the request's inmate and
    date. A second admitted visit by the same visitor is always a duplicate;
    other visitors conflict according to ``policy``.
    """
    for record in inmate_day_records:
        if not record.admitted:
            continue
        if record.visitor_id == request.visitor_id:
            return record, "duplicate_booking"
        if policy == POLICY_ONE_PER_DAY:
            return record, "one_visit_per_day"
        if policy == POLICY_NO_OVERLAP and record.slot.overlaps(request.slot):
            return record, "overlapping_slot"
    return None, "ok"


def describe_conflict(record: VisitRecord, kind: str) -> str:
    if kind == "duplicate_booking":
        return f"visit {record.id} already admitted for this visitor on {record.date.isoformat()}"
    if kind == "one_visit_per_day":
        return f"inmate already has admitted visit {record.id} on {record.date.isoformat()}"
    return f"slot overlaps admitted visit {record.id} ({record.slot.label()})"
