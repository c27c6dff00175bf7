"""Punch bucketing — AM/PM grouping per date and slot binding heuristics.

Business logic:
  - A punch belongs to AM when its minute-of-day is below noon, else PM
  - Groups keep every punch in time order (the Raw Logs view shows them all)
  - Slot binding is heuristic: first/last punch per group, never the
    shift's exact windows, because people clock outside nominal hours
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Iterable, Mapping, Optional

from dtr_portal.common.constants import (
    NOON_MINUTE,
    TIME_FORMAT,
    WEEKEND_DAYS,
    DaySlot,
)
from dtr_portal.reconciliation.schemas import RawLogDay, TimePunch

# Lone-punch fallback when the shift gives no scheduled times
_LONE_AM_SLOT = DaySlot.am_in
_LONE_PM_SLOT = DaySlot.pm_out
# AM group this small with a PM group this big means lunch-out spilled past noon
_SPILL_MAX_AM = 1
_SPILL_MIN_PM = 3


@dataclass(frozen=True)
class DayBuckets:
    am: tuple[time, ...] = ()
    pm: tuple[time, ...] = ()

    @property
    def count(self) -> int:
        return len(self.am) + len(self.pm)


def minute_of_day(moment: time) -> int:
    return moment.hour * 60 + moment.minute


def to_local(timestamp: datetime, tz: tzinfo) -> datetime:
    """Wall-clock time in the portal zone; naive stamps are already local."""
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(tz)


def format_time(moment: time) -> str:
    return moment.strftime(TIME_FORMAT)


def bucketize(
    punches: Iterable[TimePunch],
    dates: Iterable[date],
    tz: tzinfo,
) -> dict[date, DayBuckets]:
    """Group punches into AM/PM per date; every requested date gets an entry."""
    grouped: dict[date, tuple[list[time], list[time]]] = {
        day: ([], []) for day in dates
    }
    for punch in punches:
        local = to_local(punch.timestamp, tz)
        groups = grouped.get(local.date())
        if groups is None:
            continue
        moment = local.time().replace(tzinfo=None)
        am, pm = groups
        (am if minute_of_day(moment) < NOON_MINUTE else pm).append(moment)

    return {
        day: DayBuckets(am=tuple(sorted(am)), pm=tuple(sorted(pm)))
        for day, (am, pm) in grouped.items()
    }


def raw_logs(buckets: Mapping[date, DayBuckets]) -> list[RawLogDay]:
    """Every punch per date, in date order, with a Weekend remark."""
    rows = []
    for day in sorted(buckets):
        bucket = buckets[day]
        rows.append(
            RawLogDay(
                date=day,
                am=tuple(format_time(t) for t in bucket.am),
                pm=tuple(format_time(t) for t in bucket.pm),
                remarks="Weekend" if day.weekday() in WEEKEND_DAYS else "",
            )
        )
    return rows


# ── Slot binding ────────────────────────────────────────────────────

def _nearest_slot(
    moment: time,
    in_slot: DaySlot,
    out_slot: DaySlot,
    scheduled: Mapping[DaySlot, time],
    fallback: DaySlot,
) -> DaySlot:
    in_at: Optional[time] = scheduled.get(in_slot)
    out_at: Optional[time] = scheduled.get(out_slot)
    if in_at is None or out_at is None:
        return fallback
    at = minute_of_day(moment)
    if abs(at - minute_of_day(in_at)) <= abs(at - minute_of_day(out_at)):
        return in_slot
    return out_slot


def _bind_group(
    group: list[time],
    in_slot: DaySlot,
    out_slot: DaySlot,
    active_slots: frozenset[DaySlot],
    scheduled: Mapping[DaySlot, time],
    fallback: DaySlot,
) -> dict[DaySlot, time]:
    if not group:
        return {}
    if len(group) >= 2:
        return {in_slot: group[0], out_slot: group[-1]}

    moment = group[0]
    in_active = in_slot in active_slots
    out_active = out_slot in active_slots
    if in_active and not out_active:
        return {in_slot: moment}
    if out_active and not in_active:
        return {out_slot: moment}
    return {_nearest_slot(moment, in_slot, out_slot, scheduled, fallback): moment}


def bind_slots(
    bucket: DayBuckets,
    active_slots: frozenset[DaySlot],
    scheduled: Mapping[DaySlot, time],
) -> dict[DaySlot, time]:
    """Pick one punch per active slot from a day's AM/PM groups."""
    am = list(bucket.am)
    pm = list(bucket.pm)

    spill: Optional[time] = None
    if (
        DaySlot.am_out in active_slots
        and len(am) <= _SPILL_MAX_AM
        and len(pm) >= _SPILL_MIN_PM
    ):
        spill = pm.pop(0)

    if spill is not None:
        bound = {DaySlot.am_in: am[0]} if am else {}
        bound[DaySlot.am_out] = spill
    else:
        bound = _bind_group(
            am, DaySlot.am_in, DaySlot.am_out, active_slots, scheduled, _LONE_AM_SLOT,
        )
    bound.update(
        _bind_group(
            pm, DaySlot.pm_in, DaySlot.pm_out, active_slots, scheduled, _LONE_PM_SLOT,
        )
    )
    return {slot: moment for slot, moment in bound.items() if slot in active_slots}
