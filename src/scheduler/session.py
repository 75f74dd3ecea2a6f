from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Optional
from config import Settings, get_settings
from state.authorizations import AuthorizationRegistry
from state.event_log import EventLog
from state.ledger import InMemoryVisitLedger, PostgresVisitLedger
from state.locks import ShardLockTable
from state.repository import InMemoryRoster, load_from_postgres
from state.restrictions import RestrictionIndex
from state.seed import load_dev_seed
from .scheduler import VisitScheduler


@dataclass
class EstablishmentSession:
    """Owned state for one establishment: everything the scheduler reads or writes."""

    settings: Settings
    roster: InMemoryRoster
    authorizations: AuthorizationRegistry
    restrictions: RestrictionIndex
    ledger: InMemoryVisitLedger | PostgresVisitLedger
    event_log: EventLog
    locks: ShardLockTable
    scheduler: VisitScheduler = field(init=False)
    seed_loaded: bool = False

    def __post_init__(self):
        self.scheduler = VisitScheduler(
            self.roster,
            self.authorizations,
            self.restrictions,
            self.ledger,
            locks=self.locks,
            event_log=self.event_log,
            default_timeout=self.settings.EVALUATE_TIMEOUT_SECONDS,
        )


def new_session(settings: Optional[Settings] = None, ledger=None) -> EstablishmentSession:
    return EstablishmentSession(
        settings=settings or get_settings(),
        roster=InMemoryRoster(),
        authorizations=AuthorizationRegistry(),
        restrictions=RestrictionIndex(),
        ledger=ledger if ledger is not None else InMemoryVisitLedger(),
        event_log=EventLog(),
        locks=ShardLockTable(),
    )


def build_session(settings: Optional[Settings] = None) -> EstablishmentSession:
    """Assemble a session from configuration.

    With ``DATABASE_URL`` set, the roster, authorizations and restrictions are
    read from Postgres and visit records are persisted there. Otherwise the
    session lives in memory with the development seed.
    """
    logger = logging.getLogger("scheduler.session")
    settings = settings or get_settings()
    if settings.DATABASE_URL:
        session = new_session(settings, ledger=PostgresVisitLedger.from_conninfo(settings.DATABASE_URL))
        load_from_postgres(
            settings.DATABASE_URL,
            session.roster,
            session.authorizations,
            session.restrictions,
            establishment_id=settings.ESTABLISHMENT_ID,
        )
        logger.info("Using Postgres-backed session for establishment %s", session.roster.establishment.id)
        return session
    logger.info("DATABASE_URL not set; using in-memory session with development seed")
    session = new_session(settings)
    load_dev_seed(session, inmates=settings.SEED_INMATES)
    return session
