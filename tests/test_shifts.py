"""Shift assignment building and per-date resolution tests.

Pure logic, no DB.
"""

from __future__ import annotations

import logging
from datetime import date, time

from dtr_portal.common.constants import DaySlot, ShiftMode
from dtr_portal.reconciliation.schemas import SlotWindow
from dtr_portal.reconciliation.shifts import (
    FALLBACK_WINDOWS,
    NO_SHIFT,
    build_assignment,
    resolve_shift,
)


def _ampm(**overrides):
    params = dict(
        shift_name="Regular 8-5",
        mode=ShiftMode.ampm,
        checkin=time(8, 0),
        checkout=time(17, 0),
        break_out=time(12, 0),
        break_in=time(13, 0),
    )
    params.update(overrides)
    return build_assignment(**params)


class TestBuildAssignment:

    def test_ampm_owns_all_four_slots(self):
        shift = _ampm()
        assert shift.active_slots == frozenset(DaySlot)
        assert shift.scheduled[DaySlot.am_in] == time(8, 0)
        assert shift.scheduled[DaySlot.pm_out] == time(17, 0)
        assert shift.scheduled[DaySlot.am_out] == time(12, 0)

    def test_am_shift_owns_morning_slots_only(self):
        shift = build_assignment(
            shift_name="Morning", mode=ShiftMode.am, checkin=time(7, 0), checkout=time(11, 0),
        )
        assert shift.active_slots == frozenset({DaySlot.am_in, DaySlot.am_out})
        assert shift.scheduled == {DaySlot.am_in: time(7, 0), DaySlot.am_out: time(11, 0)}

    def test_pm_shift_owns_afternoon_slots_only(self):
        shift = build_assignment(
            shift_name="Afternoon", mode=ShiftMode.pm, checkin=time(13, 0), checkout=time(17, 0),
        )
        assert shift.active_slots == frozenset({DaySlot.pm_in, DaySlot.pm_out})

    def test_missing_checkin_leaves_slot_inactive(self, caplog):
        with caplog.at_level(logging.WARNING):
            shift = _ampm(checkin=None)
        assert DaySlot.am_in not in shift.active_slots
        assert DaySlot.am_out in shift.active_slots
        assert "no scheduled time" in caplog.text

    def test_configured_windows_override_fallback(self):
        shift = _ampm(windows={"AM_IN": ["06:00", "09:00"]})
        assert shift.slot_windows[DaySlot.am_in] == SlotWindow(start=time(6, 0), end=time(9, 0))
        assert shift.slot_windows[DaySlot.pm_out] == FALLBACK_WINDOWS[DaySlot.pm_out]

    def test_malformed_window_is_ignored(self, caplog):
        with caplog.at_level(logging.WARNING):
            shift = _ampm(windows={"AM_IN": ["late", "later"], "NOON": ["12:00", "13:00"]})
        assert shift.slot_windows[DaySlot.am_in] == FALLBACK_WINDOWS[DaySlot.am_in]
        assert "malformed" in caplog.text


class TestResolveShift:

    def test_no_assignment_resolves_to_empty_shift(self):
        assert resolve_shift([], date(2025, 8, 4)) is NO_SHIFT
        assert NO_SHIFT.is_empty

    def test_effective_range_is_respected(self):
        shift = _ampm(effective_from=date(2025, 8, 10), effective_to=date(2025, 8, 20))
        assert resolve_shift([shift], date(2025, 8, 9)).is_empty
        assert not resolve_shift([shift], date(2025, 8, 10)).is_empty
        assert resolve_shift([shift], date(2025, 8, 21)).is_empty

    def test_multiple_shifts_union_their_slots(self):
        morning = build_assignment(
            shift_name="Morning", mode=ShiftMode.am, checkin=time(7, 30), checkout=time(11, 30),
        )
        afternoon = build_assignment(
            shift_name="Afternoon", mode=ShiftMode.pm, checkin=time(13, 0), checkout=time(16, 30),
        )
        resolved = resolve_shift([morning, afternoon], date(2025, 8, 4))
        assert resolved.active_slots == frozenset(DaySlot)
        assert resolved.shift_name == "Morning / Afternoon"
        assert resolved.credits_for(ShiftMode.am) == 1.0
        assert resolved.has_mode(ShiftMode.pm)
        assert not resolved.has_mode(ShiftMode.ampm)

    def test_overlapping_shifts_take_earliest_in_and_latest_out(self):
        early = _ampm(shift_name="Early", checkin=time(7, 0), checkout=time(16, 0))
        late = _ampm(shift_name="Late", checkin=time(9, 0), checkout=time(18, 0), grace_minutes=10)
        resolved = resolve_shift([early, late], date(2025, 8, 4))
        assert resolved.scheduled[DaySlot.am_in] == time(7, 0)
        assert resolved.scheduled[DaySlot.pm_out] == time(18, 0)
        assert resolved.grace_minutes == 10
