from datetime import date, datetime, timedelta, timezone

import pytest

from state.errors import AlreadyLiftedError, InvalidInputError, NotFoundError
from state.models import RESTRICTION_LIFTED
from state.restrictions import RestrictionIndex

T0 = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def fixed_clock(*moments):
    remaining = iter(moments)
    return lambda: next(remaining)


def test_restriction_needs_a_target_and_a_reason():
    index = RestrictionIndex()
    with pytest.raises(InvalidInputError):
        index.add_restriction("no target", date(2024, 6, 10))
    with pytest.raises(InvalidInputError):
        index.add_restriction("  ", date(2024, 6, 10), inmate_id="I1")
    with pytest.raises(InvalidInputError):
        index.add_restriction("bad kind", date(2024, 6, 10), inmate_id="I1", kind="WHIM")


def test_restriction_cannot_end_before_it_starts():
    index = RestrictionIndex()
    with pytest.raises(InvalidInputError):
        index.add_restriction("backwards", date(2024, 6, 10), date(2024, 6, 9), inmate_id="I1")


def test_date_bounds_cover_whole_days():
    index = RestrictionIndex()
    index.add_restriction("lockdown", date(2024, 6, 10), date(2024, 6, 11), inmate_id="I1")
    assert index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 0, 0))
    assert index.active_restrictions("I1", "V1", datetime(2024, 6, 11, 15, 59))
    assert not index.active_restrictions("I1", "V1", datetime(2024, 6, 12, 0, 0))
    assert not index.active_restrictions("I1", "V1", datetime(2024, 6, 9, 23, 59))


def test_open_ended_restriction_stays_active():
    index = RestrictionIndex()
    index.add_restriction("barred", date(2024, 1, 31), visitor_id="V1")
    assert index.active_restrictions("I9", "V1", datetime(2030, 1, 1, 10, 0))


def test_dual_target_restriction_is_reported_once():
    index = RestrictionIndex()
    r = index.add_restriction("pair", date(2024, 6, 1), inmate_id="I1", visitor_id="V1")
    active = index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 10, 0))
    assert [x.id for x in active] == [r.id]


def test_dual_target_restriction_matches_either_party():
    index = RestrictionIndex()
    index.add_restriction("pair", date(2024, 6, 1), inmate_id="I1", visitor_id="V1")
    at = datetime(2024, 6, 10, 10, 0)
    assert index.active_restrictions("I2", "V1", at)
    assert index.active_restrictions("I1", "V2", at)
    assert not index.active_restrictions("I2", "V2", at)


def test_active_restrictions_newest_first_then_by_id():
    later = T0 + timedelta(hours=1)
    index = RestrictionIndex(clock=fixed_clock(T0, later, later))
    first = index.add_restriction("first", date(2024, 6, 1), inmate_id="I1")
    second = index.add_restriction("second", date(2024, 6, 1), visitor_id="V1")
    third = index.add_restriction("third", date(2024, 6, 1), inmate_id="I1")
    active = index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 10, 0))
    assert [r.id for r in active] == [second.id, third.id, first.id]


def test_lift_restriction():
    index = RestrictionIndex(clock=fixed_clock(T0, T0 + timedelta(days=1)))
    r = index.add_restriction("lockdown", date(2024, 6, 1), inmate_id="I1")
    lifted = index.lift_restriction(r.id, "cleared by director")
    assert lifted.status == RESTRICTION_LIFTED
    assert lifted.lifted_at == T0 + timedelta(days=1)
    assert lifted.lift_reason == "cleared by director"
    assert not index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 10, 0))
    # still kept for audit
    assert index.get(r.id) is lifted


def test_lift_twice_or_unknown_fails():
    index = RestrictionIndex()
    r = index.add_restriction("lockdown", date(2024, 6, 1), inmate_id="I1")
    index.lift_restriction(r.id)
    with pytest.raises(AlreadyLiftedError):
        index.lift_restriction(r.id)
    with pytest.raises(AlreadyLiftedError):
        index.extend_restriction(r.id, date(2024, 7, 1))
    with pytest.raises(NotFoundError):
        index.lift_restriction(999)


def test_extend_restriction():
    index = RestrictionIndex()
    r = index.add_restriction("lockdown", date(2024, 6, 1), date(2024, 6, 5), inmate_id="I1")
    assert not index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 10, 0))
    index.extend_restriction(r.id, date(2024, 6, 15))
    assert index.active_restrictions("I1", "V1", datetime(2024, 6, 10, 10, 0))
    with pytest.raises(InvalidInputError):
        index.extend_restriction(r.id, date(2024, 5, 1))


def test_expiring_within_and_count_active():
    index = RestrictionIndex()
    soon = index.add_restriction("soon", date(2024, 6, 1), date(2024, 6, 20), inmate_id="I1")
    index.add_restriction("later", date(2024, 6, 1), date(2024, 12, 31), inmate_id="I2")
    index.add_restriction("forever", date(2024, 6, 1), visitor_id="V1")
    now = datetime(2024, 6, 10, 0, 0)
    assert [r.id for r in index.expiring_within(30, now)] == [soon.id]
    assert index.count_active(now) == 3


def test_aware_window_bounds_are_rejected():
    index = RestrictionIndex()
    aware = datetime(2024, 7, 1, tzinfo=timezone.utc)
    with pytest.raises(InvalidInputError):
        index.add_restriction("lockdown", aware, inmate_id="I1")
    with pytest.raises(InvalidInputError):
        index.add_restriction("lockdown", date(2024, 6, 1), aware, inmate_id="I1")
    r = index.add_restriction("lockdown", datetime(2024, 6, 1, 8, 0), inmate_id="I1")
    with pytest.raises(InvalidInputError):
        index.extend_restriction(r.id, aware)
    assert index.count_active(datetime(2024, 6, 10, 10, 0)) == 1
