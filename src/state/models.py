from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Optional, Dict, Any, FrozenSet
import uuid
from .errors import InvalidInputError

# Core domain models for one establishment session

def _now() -> datetime:
    return datetime.now(timezone.utc)

# Party status
ACTIVE = "ACTIVE"
INACTIVE = "INACTIVE"

# Authorization status
AUTH_ACTIVE = "ACTIVE"
AUTH_SUSPENDED = "SUSPENDED"
AUTH_REVOKED = "REVOKED"

# Restriction status
RESTRICTION_ACTIVE = "ACTIVE"
RESTRICTION_LIFTED = "LIFTED"

# Visit decisions
ADMITTED = "ADMITTED"
REJECTED = "REJECTED"

# Rejection reason codes, in evaluation order
PARTY_INACTIVE = "PARTY_INACTIVE"
OUTSIDE_VISITING_HOURS = "OUTSIDE_VISITING_HOURS"
NOT_AUTHORIZED = "NOT_AUTHORIZED"
RESTRICTED = "RESTRICTED"
DUPLICATE_OR_CONFLICT = "DUPLICATE_OR_CONFLICT"
CAPACITY_REACHED = "CAPACITY_REACHED"
REJECTION_REASONS = (
    PARTY_INACTIVE,
    OUTSIDE_VISITING_HOURS,
    NOT_AUTHORIZED,
    RESTRICTED,
    DUPLICATE_OR_CONFLICT,
    CAPACITY_REACHED,
)

# Per-establishment conflict policy for admitted visits of one inmate
POLICY_ONE_PER_DAY = "ONE_PER_DAY"
POLICY_NO_OVERLAP = "NO_OVERLAP"
POLICY_PAIR_ONLY = "PAIR_ONLY"
VISIT_POLICIES = (POLICY_ONE_PER_DAY, POLICY_NO_OVERLAP, POLICY_PAIR_ONLY)

RESTRICTION_KINDS = ("CONDUCT", "JUDICIAL", "ADMINISTRATIVE", "SECURITY")
RELATIONSHIP_KINDS = (
    "PARENT", "MOTHER", "CHILD", "SIBLING", "SPOUSE",
    "PARTNER", "FRIEND", "RELATIVE", "LAWYER", "OTHER",
)

# Monday=0 .. Sunday=6, matching date.weekday()
WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start < other.end and other.start < self.end

    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class Establishment:
    id: str
    name: str
    visiting_days: FrozenSet[int]  # weekday numbers, see WEEKDAYS
    start: time
    end: time
    visit_policy: str = POLICY_ONE_PER_DAY
    modality: str = "MIXTA"  # PRESENCIAL | SECTOR | MIXTA
    active: bool = True
    max_concurrent_visits: Optional[int] = None  # None = unlimited

    def __post_init__(self):
        if self.visit_policy not in VISIT_POLICIES:
            raise InvalidInputError(f"unknown visit policy {self.visit_policy!r}; expected one of {VISIT_POLICIES}")
        if self.max_concurrent_visits is not None and self.max_concurrent_visits < 1:
            raise InvalidInputError("max_concurrent_visits must be at least 1")


@dataclass
class Inmate:
    id: str
    file_number: str
    block: str
    floor: int
    status: str = ACTIVE  # ACTIVE | INACTIVE
    first_name: str = ""
    last_name: str = ""
    admitted_on: Optional[date] = None

    def full_name(self) -> str:
        return f"{self.last_name}, {self.first_name}".strip(", ")

    def location(self) -> str:
        return f"Block {self.block} - Floor {self.floor}"


@dataclass
class Visitor:
    id: str
    national_id: str
    status: str = ACTIVE  # ACTIVE | INACTIVE
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None

    def full_name(self) -> str:
        return f"{self.last_name}, {self.first_name}".strip(", ")


@dataclass
class Authorization:
    id: int
    inmate_id: str
    visitor_id: str
    valid_from: datetime
    valid_until: Optional[datetime] = None  # None = open ended
    status: str = AUTH_ACTIVE  # ACTIVE | SUSPENDED | REVOKED
    relationship: str = "OTHER"
    granted_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def covers(self, at: datetime) -> bool:
        if at < self.valid_from:
            return False
        return self.valid_until is None or at <= self.valid_until

    def is_expired(self, at: datetime) -> bool:
        return self.valid_until is not None and at > self.valid_until


@dataclass
class Restriction:
    id: int
    reason: str
    starts_at: datetime
    ends_at: Optional[datetime] = None  # None = indefinite
    inmate_id: Optional[str] = None
    visitor_id: Optional[str] = None
    kind: str = "ADMINISTRATIVE"
    status: str = RESTRICTION_ACTIVE  # ACTIVE | LIFTED
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    lifted_at: Optional[datetime] = None
    lift_reason: Optional[str] = None

    def is_active_at(self, at: datetime) -> bool:
        if self.status != RESTRICTION_ACTIVE:
            return False
        if at < self.starts_at:
            return False
        return self.ends_at is None or at <= self.ends_at


@dataclass(frozen=True)
class VisitRequest:
    inmate_id: str
    visitor_id: str
    date: date
    slot: TimeSlot

    def moment(self) -> datetime:
        return datetime.combine(self.date, self.slot.start)


@dataclass(frozen=True)
class VisitRecord:
    inmate_id: str
    visitor_id: str
    date: date
    slot: TimeSlot
    decision: str  # ADMITTED | REJECTED
    decided_at: datetime
    reason: Optional[str] = None
    detail: Optional[str] = None
    id: Optional[int] = None

    @property
    def admitted(self) -> bool:
        return self.decision == ADMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "inmate_id": self.inmate_id,
            "visitor_id": self.visitor_id,
            "date": self.date.isoformat(),
            "start": self.slot.start.strftime("%H:%M"),
            "end": self.slot.end.strftime("%H:%M"),
            "decision": self.decision,
            "reason": self.reason,
            "detail": self.detail,
            "decided_at": self.decided_at.isoformat(),
        }


@dataclass
class EventLogEntry:
    id: str
    timestamp: datetime
    correlation_id: str
    actor: str
    shard: Optional[str]
    kind: str  # visit_evaluated, authorization_granted, restriction_lifted, etc.
    data: Dict[str, Any]


# Utility factories

def new_id() -> str:
    return uuid.uuid4().hex


def _local(value: datetime) -> datetime:
    # windows are compared against naive establishment-local visit times
    if value.tzinfo is not None and value.utcoffset() is not None:
        raise InvalidInputError(f"window bound {value.isoformat()} must be a naive local datetime")
    return value


def start_of(value: date | datetime) -> datetime:
    """Lower window bound; a bare date starts at midnight."""
    if isinstance(value, datetime):
        return _local(value)
    if not isinstance(value, date):
        raise InvalidInputError("window start must be a date or datetime")
    return datetime.combine(value, time.min)


def end_of(value: date | datetime | None) -> Optional[datetime]:
    """Upper window bound; a bare date is inclusive through the end of that day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _local(value)
    if not isinstance(value, date):
        raise InvalidInputError("window end must be a date or datetime")
    return datetime.combine(value, time.max)
