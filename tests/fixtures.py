from datetime import date, time

from config import Settings
from scheduler.session import new_session
from state.models import TimeSlot, VisitRequest
from state.seed import load_dev_seed, snapshot_hash

ANCHOR = date(2024, 1, 1)
# A Monday well clear of the seeded restrictions
VISIT_DAY = date(2024, 6, 10)


def make_session(policy: str | None = None, inmates: int = 20, anchor: date = ANCHOR, capacity: int | None = None):
    """Fresh in-memory session with the deterministic seed loaded."""
    settings = Settings()
    if policy:
        settings.VISITS_POLICY = policy
    settings.SEED_ANCHOR_DATE = anchor
    settings.MAX_CONCURRENT_VISITS = capacity
    settings.EVALUATE_TIMEOUT_SECONDS = 2.0
    session = new_session(settings)
    load_dev_seed(session, inmates=inmates)
    return session


def reset_and_seed(anchor: date = ANCHOR):
    """Build a new seeded session and return it with its snapshot hash."""
    session = make_session(anchor=anchor)
    return session, snapshot_hash(session)


def visit(inmate: str, visitor: str, day: date = VISIT_DAY, start: str = "10:00", end: str = "10:30") -> VisitRequest:
    return VisitRequest(inmate, visitor, day, TimeSlot(time.fromisoformat(start), time.fromisoformat(end)))
