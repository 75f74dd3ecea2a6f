from __future__ import annotations
from datetime import datetime, timedelta, date, time, timezone
from hashlib import sha256
import json
from .models import (
    ACTIVE,
    INACTIVE,
    AUTH_ACTIVE,
    RELATIONSHIP_KINDS,
    Authorization,
    Establishment,
    Inmate,
    Restriction,
    Visitor,
)

# Single establishment from the facility's data script
ESTABLISHMENT_ID = "est_1"
ESTABLISHMENT_NAME = "Unidad Nº1 - Lisandro Olmos"

_LAST_NAMES = [
    "García", "Rodríguez", "Fernández", "López", "Martínez", "Pérez", "Gómez",
    "Sánchez", "Díaz", "Romero", "Torres", "Silva", "Molina", "Vargas",
    "Castro", "Ortega", "Ramírez", "Morales", "Herrera", "Mendoza",
]
_FIRST_NAMES = [
    "Roberto Carlos", "José Luis", "Miguel Ángel", "Juan Carlos", "Diego Alberto",
    "Horacio Raúl", "Rubén Darío", "Luis Alberto", "Jorge Mario", "Carlos Eduardo",
]
_VISITORS = [
    ("20345678", "González", "Ana María", "221-456-7890"),
    ("21456789", "Fernández", "Roberto Carlos", "221-567-8901"),
    ("22567890", "López", "Laura Beatriz", "221-678-9012"),
    ("23678901", "Martínez", "Jorge Luis", "221-789-0123"),
    ("24789012", "Pérez", "Mónica Susana", "221-890-1234"),
    ("25890123", "Rodríguez", "Carlos Alberto", "221-901-2345"),
    ("26901234", "Sánchez", "María del Carmen", "221-012-3456"),
    ("27012345", "Romero", "Diego Martín", "221-123-4567"),
    ("28123456", "Gómez", "Silvana Andrea", "221-234-5678"),
    ("29234567", "Díaz", "Juan Pedro", "221-345-6789"),
]
_BLOCKS = ["A", "B", "C", "D", "E"]


def inmate_id(n: int) -> str:
    return f"inmate_{n:03d}"


def visitor_id(n: int) -> str:
    return f"visitor_{n:02d}"


def _stamp(d: date) -> datetime:
    return datetime.combine(d, time(hour=8), tzinfo=timezone.utc)


def seed_establishment(policy: str = "ONE_PER_DAY", max_concurrent_visits: int | None = None) -> Establishment:
    return Establishment(
        id=ESTABLISHMENT_ID,
        name=ESTABLISHMENT_NAME,
        visiting_days=frozenset(range(7)),
        start=time(7, 0),
        end=time(16, 0),
        visit_policy=policy,
        modality="MIXTA",
        max_concurrent_visits=max_concurrent_visits,
    )


def load_dev_seed(session, anchor: date | None = None, inmates: int = 100):
    """Load the deterministic development seed into ``session``.

    - All dates derive from ``anchor`` (no wall clock)
    - Stable ids: inmate_001.., visitor_01.., authorization and restriction ids from 1
    - A second call on the same session is a no-op
    """
    if getattr(session, "seed_loaded", False):
        return
    anchor = anchor or session.settings.SEED_ANCHOR_DATE

    session.roster.set_establishment(
        seed_establishment(session.settings.VISITS_POLICY, session.settings.MAX_CONCURRENT_VISITS)
    )

    # 20 inmates per block: floors 1 and 2 hold 7, floor 3 holds 6
    for n in range(1, inmates + 1):
        block = _BLOCKS[((n - 1) // 20) % len(_BLOCKS)]
        pos = (n - 1) % 20
        floor = 1 if pos < 7 else (2 if pos < 14 else 3)
        session.roster.save_inmate(
            Inmate(
                id=inmate_id(n),
                file_number=f"LEG-2024-{n:03d}",
                block=block,
                floor=floor,
                # last two are transferred out
                status=INACTIVE if n > inmates - 2 and inmates > 2 else ACTIVE,
                first_name=_FIRST_NAMES[(n - 1) % len(_FIRST_NAMES)],
                last_name=_LAST_NAMES[(n - 1) % len(_LAST_NAMES)],
                admitted_on=anchor - timedelta(days=30 * (n % 12) + n),
            )
        )

    for n, (national_id, last, first, phone) in enumerate(_VISITORS, start=1):
        session.roster.save_visitor(
            Visitor(
                id=visitor_id(n),
                national_id=national_id,
                first_name=first,
                last_name=last,
                phone=phone,
                status=ACTIVE,
            )
        )

    # visitor N may visit inmate N, open ended; visitor 1 may also visit inmate 2 for 180 days
    auth_id = 1
    for n in range(1, min(len(_VISITORS), inmates) + 1):
        session.authorizations.load(
            Authorization(
                id=auth_id,
                inmate_id=inmate_id(n),
                visitor_id=visitor_id(n),
                valid_from=datetime.combine(anchor, time.min),
                valid_until=None,
                status=AUTH_ACTIVE,
                relationship=RELATIONSHIP_KINDS[(n - 1) % len(RELATIONSHIP_KINDS)],
                granted_by="admin",
                created_at=_stamp(anchor),
            )
        )
        auth_id += 1
    if inmates >= 2:
        session.authorizations.load(
            Authorization(
                id=auth_id,
                inmate_id=inmate_id(2),
                visitor_id=visitor_id(1),
                valid_from=datetime.combine(anchor, time.min),
                valid_until=datetime.combine(anchor + timedelta(days=180), time.max),
                relationship="FRIEND",
                granted_by="admin",
                created_at=_stamp(anchor),
            )
        )

    # Visitor 10 barred for conduct from day 30; inmate 5 in a one week security lockdown from day 60
    session.restrictions.load(
        Restriction(
            id=1,
            reason="Conducta inadecuada en sala de visitas",
            starts_at=datetime.combine(anchor + timedelta(days=30), time.min),
            ends_at=None,
            visitor_id=visitor_id(10),
            kind="CONDUCT",
            created_by="supervisor1",
            created_at=_stamp(anchor + timedelta(days=30)),
        )
    )
    if inmates >= 5:
        session.restrictions.load(
            Restriction(
                id=2,
                reason="Requisa de pabellón",
                starts_at=datetime.combine(anchor + timedelta(days=60), time.min),
                ends_at=datetime.combine(anchor + timedelta(days=67), time.max),
                inmate_id=inmate_id(5),
                kind="SECURITY",
                created_by="supervisor1",
                created_at=_stamp(anchor + timedelta(days=60)),
            )
        )

    session.seed_loaded = True


def snapshot_hash(session) -> str:
    """Produce a stable hash of seeded state for reproducibility tests."""
    payload = {
        "establishment": session.roster.establishment.__dict__ if session.roster.establishment else None,
        "inmates": [i.__dict__ for i in session.roster.list_inmates()],
        "visitors": [v.__dict__ for v in session.roster.list_visitors()],
        "authorizations": [a.__dict__ for a in session.authorizations.list_authorizations()],
        "restrictions": [r.__dict__ for r in session.restrictions.list_restrictions()],
    }
    ser = json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)
    return sha256(ser.encode()).hexdigest()
