"""Shift assignment resolution — which slots are expected on a date.

An employee can hold several shifts at once (e.g. a morning and an
afternoon assignment at different offices). The active slots for a date
are the union over every effective shift; display windows and scheduled
times take the earliest start and the latest end per slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Iterable, Mapping, Optional

from dtr_portal.common.constants import DAY_SLOTS, IN_SLOTS, DaySlot, ShiftMode
from dtr_portal.reconciliation.schemas import ShiftAssignment, SlotWindow

logger = logging.getLogger(__name__)

SHIFT_NAME_SEPARATOR = " / "

# Used when a shift does not configure its own display windows
FALLBACK_WINDOWS: dict[DaySlot, SlotWindow] = {
    DaySlot.am_in: SlotWindow(start=time(4, 0), end=time(11, 59)),
    DaySlot.am_out: SlotWindow(start=time(11, 0), end=time(12, 30)),
    DaySlot.pm_in: SlotWindow(start=time(12, 31), end=time(14, 0)),
    DaySlot.pm_out: SlotWindow(start=time(14, 1), end=time(23, 59)),
}


# ── Building assignments from shift rows ────────────────────────────

def _parse_windows(
    shift_name: str,
    raw: Optional[Mapping[str, Any]],
) -> dict[DaySlot, SlotWindow]:
    windows: dict[DaySlot, SlotWindow] = {}
    for key, bounds in (raw or {}).items():
        try:
            slot = DaySlot(key)
            start, end = (time.fromisoformat(b) for b in bounds)
        except (TypeError, ValueError):
            logger.warning("Shift %r has a malformed window %r=%r; ignored", shift_name, key, bounds)
            continue
        if start > end:
            logger.warning("Shift %r window %s starts after it ends; ignored", shift_name, key)
            continue
        windows[slot] = SlotWindow(start=start, end=end)
    return windows


def build_assignment(
    *,
    shift_name: str,
    mode: ShiftMode,
    checkin: Optional[time],
    checkout: Optional[time],
    break_out: Optional[time] = None,
    break_in: Optional[time] = None,
    credits: float = 1.0,
    grace_minutes: int = 0,
    windows: Optional[Mapping[str, Any]] = None,
    effective_from: Optional[date] = None,
    effective_to: Optional[date] = None,
) -> ShiftAssignment:
    """Turn a configured shift into its active slots and schedule.

    AM shifts own AM_IN/AM_OUT, PM shifts own PM_IN/PM_OUT. AMPM shifts
    own all four: check-in is AM_IN, check-out is PM_OUT and the optional
    break times fill AM_OUT/PM_IN. A missing check-in or check-out leaves
    that slot inactive.
    """
    if mode == ShiftMode.am:
        wanted = {DaySlot.am_in: checkin, DaySlot.am_out: checkout}
        always_active: set[DaySlot] = set()
    elif mode == ShiftMode.pm:
        wanted = {DaySlot.pm_in: checkin, DaySlot.pm_out: checkout}
        always_active = set()
    else:
        wanted = {DaySlot.am_in: checkin, DaySlot.pm_out: checkout}
        always_active = {DaySlot.am_out, DaySlot.pm_in}

    scheduled: dict[DaySlot, time] = {}
    active: set[DaySlot] = set(always_active)
    for slot, at in wanted.items():
        if at is None:
            logger.warning("Shift %r has no scheduled time for %s; slot left inactive", shift_name, slot.value)
            continue
        scheduled[slot] = at
        active.add(slot)

    if mode == ShiftMode.ampm:
        if break_out is not None:
            scheduled[DaySlot.am_out] = break_out
        if break_in is not None:
            scheduled[DaySlot.pm_in] = break_in

    configured = _parse_windows(shift_name, windows)
    slot_windows = {
        slot: configured.get(slot, FALLBACK_WINDOWS[slot]) for slot in active
    }

    return ShiftAssignment(
        shift_name=shift_name,
        mode=mode,
        active_slots=frozenset(active),
        slot_windows=slot_windows,
        scheduled=scheduled,
        credits=credits,
        grace_minutes=grace_minutes,
        effective_from=effective_from,
        effective_to=effective_to,
    )


# ── Resolution per date ─────────────────────────────────────────────

@dataclass(frozen=True)
class ResolvedShift:
    """Union of every shift effective on one date."""

    assignments: tuple[ShiftAssignment, ...] = ()
    active_slots: frozenset[DaySlot] = frozenset()
    windows: dict[DaySlot, SlotWindow] = field(default_factory=dict)
    scheduled: dict[DaySlot, time] = field(default_factory=dict)
    shift_name: str = ""
    grace_minutes: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.active_slots

    def credits_for(self, mode: ShiftMode) -> float:
        return sum(a.credits for a in self.assignments if a.mode == mode)

    def has_mode(self, mode: ShiftMode) -> bool:
        return any(a.mode == mode for a in self.assignments)


NO_SHIFT = ResolvedShift()


def resolve_shift(assignments: Iterable[ShiftAssignment], day: date) -> ResolvedShift:
    """Merge the assignments effective on ``day``."""
    effective = tuple(a for a in assignments if a.is_effective_on(day))
    if not effective:
        return NO_SHIFT

    active: set[DaySlot] = set()
    windows: dict[DaySlot, SlotWindow] = {}
    scheduled: dict[DaySlot, time] = {}
    names: list[str] = []

    for assignment in effective:
        active |= assignment.active_slots
        if assignment.shift_name not in names:
            names.append(assignment.shift_name)

        for slot, window in assignment.slot_windows.items():
            current = windows.get(slot)
            if current is None:
                windows[slot] = window
            else:
                windows[slot] = SlotWindow(
                    start=min(current.start, window.start),
                    end=max(current.end, window.end),
                )

        for slot, at in assignment.scheduled.items():
            current_at = scheduled.get(slot)
            if current_at is None:
                scheduled[slot] = at
            elif slot in IN_SLOTS:
                scheduled[slot] = min(current_at, at)
            else:
                scheduled[slot] = max(current_at, at)

    return ResolvedShift(
        assignments=effective,
        active_slots=frozenset(active),
        windows={slot: windows[slot] for slot in DAY_SLOTS if slot in windows},
        scheduled=scheduled,
        shift_name=SHIFT_NAME_SEPARATOR.join(names),
        grace_minutes=max(a.grace_minutes for a in effective),
    )
