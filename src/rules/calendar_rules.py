from __future__ import annotations
from datetime import date, time
from typing import FrozenSet, Iterable
from state.errors import InvalidInputError
from state.models import Establishment, TimeSlot, WEEKDAYS

# Spanish day names as stored in the establishment table, plus English forms
_DAY_ALIASES = {
    "LUNES": 0, "MARTES": 1, "MIERCOLES": 2, "MIÉRCOLES": 2, "JUEVES": 3,
    "VIERNES": 4, "SABADO": 5, "SÁBADO": 5, "DOMINGO": 6,
    "MONDAY": 0, "TUESDAY": 1, "WEDNESDAY": 2, "THURSDAY": 3,
    "FRIDAY": 4, "SATURDAY": 5, "SUNDAY": 6,
}
_DAY_ALIASES.update({name: idx for idx, name in enumerate(WEEKDAYS)})


def validate_slot(slot: TimeSlot) -> None:
    if slot is None or not isinstance(slot.start, time) or not isinstance(slot.end, time):
        raise InvalidInputError("time slot must have start and end times")
    if slot.end <= slot.start:
        raise InvalidInputError(f"time slot end {slot.end:%H:%M} must be after start {slot.start:%H:%M}")


def is_visiting_day(establishment: Establishment, day: date) -> bool:
    return day.weekday() in establishment.visiting_days


def is_within_visiting_window(establishment: Establishment, day: date, slot: TimeSlot) -> bool:
    """True iff ``day`` is an allowed weekday and ``slot`` fits inside [start, end]."""
    validate_slot(slot)
    if not isinstance(day, date):
        raise InvalidInputError("requested date is required")
    if not establishment.active:
        return False
    if not is_visiting_day(establishment, day):
        return False
    return establishment.start <= slot.start and slot.end <= establishment.end


def parse_visiting_days(raw: str | Iterable[str]) -> FrozenSet[int]:
    if isinstance(raw, str):
        names = raw.split(",")
    else:
        names = list(raw)
    days = set()
    for name in names:
        key = name.strip().upper()
        if not key:
            continue
        if key not in _DAY_ALIASES:
            raise InvalidInputError(f"unknown weekday: {name}")
        days.add(_DAY_ALIASES[key])
    if not days:
        raise InvalidInputError("at least one visiting day is required")
    return frozenset(days)


def format_visiting_hours(establishment: Establishment) -> str:
    days = ",".join(WEEKDAYS[d] for d in sorted(establishment.visiting_days))
    return f"{days} {establishment.start:%H:%M}-{establishment.end:%H:%M}"
