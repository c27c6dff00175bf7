"""Exception overlay — resolve every (date, slot) cell of the annotated DTR.

Business logic:
  - An inactive slot always renders "—", whatever else happened that day
  - A bound punch wins over any annotation; fix-log overrides and locator
    backfills produce punches too and are flagged as such
  - Otherwise the first enabled annotation rule wins, in fixed order:
    Weekend → Leave → Travel → CDO → Holiday → Absent → "—"
  - Per-day late minutes, day credits and remarks are derived from the
    same resolved values
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time
from typing import Callable, Iterable, Mapping, Optional

from dtr_portal.common.constants import (
    DAY_SLOTS,
    IN_SLOTS,
    LIVE_STATUSES,
    WEEKEND_DAYS,
    AnnotationKind,
    ApprovalStatus,
    DaySlot,
    RemarkType,
    ShiftMode,
)
from dtr_portal.reconciliation.punches import DayBuckets, bind_slots, format_time, minute_of_day
from dtr_portal.reconciliation.schemas import (
    AnnotationToggles,
    AnnotationValue,
    CdoEntry,
    DayRecord,
    FixLogEntry,
    HolidayEntry,
    InactiveValue,
    LeaveEntry,
    LocatorEntry,
    PunchValue,
    RemarkEntry,
    TravelEntry,
)
from dtr_portal.reconciliation.shifts import ResolvedShift


WORK_SUSPENSION = "Work Suspension"
FILE_A_LOCATOR = "File a locator"
REMARK_SEPARATOR = "; "
LOCATOR_BADGE = "Locator"
FIXLOG_BADGE = "Fix Log"


# ═════════════════════════════════════════════════════════════════════
# Exceptions per day
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DayExceptions:
    locators: tuple[LocatorEntry, ...] = ()
    fixlogs: tuple[FixLogEntry, ...] = ()
    leaves: tuple[LeaveEntry, ...] = ()
    travels: tuple[TravelEntry, ...] = ()
    cdos: tuple[CdoEntry, ...] = ()
    holidays: tuple[HolidayEntry, ...] = ()


_FIELD_BY_KIND = {
    "locator": "locators",
    "fixlog": "fixlogs",
    "leave": "leaves",
    "travel": "travels",
    "cdo": "cdos",
    "holiday": "holidays",
}

NO_EXCEPTIONS = DayExceptions()


def index_exceptions(records: Iterable, dates: Iterable[date]) -> dict[date, DayExceptions]:
    """Bucket uniform exception records by the window dates they apply to."""
    days = list(dates)
    grouped: dict[date, dict[str, list]] = {day: defaultdict(list) for day in days}
    for record in records:
        for day in days:
            if record.applies_to(day):
                grouped[day][_FIELD_BY_KIND[record.kind]].append(record)
    return {
        day: DayExceptions(**{name: tuple(items) for name, items in lists.items()})
        for day, lists in grouped.items()
    }


# ═════════════════════════════════════════════════════════════════════
# Day context
# ═════════════════════════════════════════════════════════════════════


def _approved(entries: Iterable) -> tuple:
    return tuple(e for e in entries if e.status == ApprovalStatus.approved)


def _live(entries: Iterable) -> tuple:
    return tuple(e for e in entries if e.status in LIVE_STATUSES)


@dataclass(frozen=True)
class DayContext:
    """Everything the annotation rules and remarks look at for one date."""

    day: date
    today: date
    shift: ResolvedShift
    exceptions: DayExceptions
    values: Mapping[DaySlot, time] = field(default_factory=dict)

    @property
    def is_weekend(self) -> bool:
        return self.day.weekday() in WEEKEND_DAYS

    @property
    def is_past(self) -> bool:
        return self.day < self.today

    @property
    def leaves(self) -> tuple[LeaveEntry, ...]:
        return _live(self.exceptions.leaves)

    @property
    def travels(self) -> tuple[TravelEntry, ...]:
        return _approved(self.exceptions.travels)

    @property
    def cdos(self) -> tuple[CdoEntry, ...]:
        return _approved(self.exceptions.cdos)

    @property
    def locators(self) -> tuple[LocatorEntry, ...]:
        return _live(self.exceptions.locators)

    @property
    def holidays(self) -> tuple[HolidayEntry, ...]:
        return self.exceptions.holidays

    @property
    def is_absent(self) -> bool:
        return (
            not self.shift.is_empty
            and not self.is_weekend
            and not self.leaves
            and not self.travels
            and not self.cdos
            and not self.holidays
            and not self.values
            and self.is_past
        )

    @property
    def needs_locator(self) -> bool:
        """Some but not all expected punches on a plain past workday."""
        return (
            not self.is_weekend
            and self.is_past
            and 0 < len(self.values) < len(self.shift.active_slots)
            and not self.locators
            and not self.leaves
            and not self.travels
            and not self.cdos
            and not self.holidays
        )


# ═════════════════════════════════════════════════════════════════════
# Annotation precedence table
# ═════════════════════════════════════════════════════════════════════


def holiday_label(holidays: Iterable[HolidayEntry]) -> str:
    names: list[str] = []
    for holiday in holidays:
        if holiday.is_work_suspension or "work suspension" in holiday.display_text.lower():
            return WORK_SUSPENSION
        if holiday.display_text not in names:
            names.append(holiday.display_text)
    return ", ".join(names)


def _leave_text(ctx: DayContext) -> str:
    approved = _approved(ctx.leaves)
    if not approved:
        return ApprovalStatus.for_approval.value
    if all(leave.is_official_business for leave in approved):
        return "OB"
    return "Leave"


@dataclass(frozen=True)
class AnnotationRule:
    kind: AnnotationKind
    toggle: str
    applies: Callable[[DayContext], bool]
    render: Callable[[DayContext], str]


ANNOTATION_RULES: tuple[AnnotationRule, ...] = (
    AnnotationRule(AnnotationKind.weekend, "weekend", lambda c: c.is_weekend, lambda c: "Weekend"),
    AnnotationRule(AnnotationKind.leave, "leave", lambda c: bool(c.leaves), _leave_text),
    AnnotationRule(AnnotationKind.travel, "travel", lambda c: bool(c.travels), lambda c: "Travel"),
    AnnotationRule(AnnotationKind.cdo, "cdo", lambda c: bool(c.cdos), lambda c: "CDO"),
    AnnotationRule(
        AnnotationKind.holiday, "holiday", lambda c: bool(c.holidays), lambda c: holiday_label(c.holidays),
    ),
    AnnotationRule(AnnotationKind.absent, "absent", lambda c: c.is_absent, lambda c: "Absent"),
)


def annotate(ctx: DayContext, toggles: AnnotationToggles) -> AnnotationValue:
    """First enabled, matching rule wins; disabled rules fall through."""
    for rule in ANNOTATION_RULES:
        if getattr(toggles, rule.toggle) and rule.applies(ctx):
            return AnnotationValue(kind=rule.kind, text=rule.render(ctx))
    return AnnotationValue()


# ═════════════════════════════════════════════════════════════════════
# Overrides: fix logs, locator backfill
# ═════════════════════════════════════════════════════════════════════


def _same_minute(a: time, b: time) -> bool:
    return minute_of_day(a) == minute_of_day(b)


def apply_overrides(
    bound: Mapping[DaySlot, time],
    shift: ResolvedShift,
    exceptions: DayExceptions,
) -> tuple[dict[DaySlot, time], dict[DaySlot, set[str]]]:
    """Layer approved fix logs, then approved locator slips, onto punches.

    Returns the final slot values plus the override flags per slot.
    """
    values = dict(bound)
    flags: dict[DaySlot, set[str]] = defaultdict(set)

    for fix in _approved(exceptions.fixlogs):
        for slot, at in fix.slot_times.items():
            if slot in shift.active_slots:
                values[slot] = at
                flags[slot].add("fixlog")

    locators = _approved(exceptions.locators)
    if locators:
        for slot in DAY_SLOTS:
            scheduled = shift.scheduled.get(slot)
            if slot not in shift.active_slots or scheduled is None:
                continue
            if not any(loc.covers(scheduled) for loc in locators):
                continue
            current = values.get(slot)
            if current is None:
                values[slot] = scheduled
                flags[slot].add("locator")
            elif _same_minute(current, scheduled):
                flags[slot].add("locator")

    return values, flags


# ═════════════════════════════════════════════════════════════════════
# Late minutes and day credits
# ═════════════════════════════════════════════════════════════════════


def late_minutes(values: Mapping[DaySlot, time], shift: ResolvedShift) -> int:
    """Tardiness on IN slots beyond grace plus undertime on OUT slots."""
    total = 0
    for slot, at in values.items():
        scheduled = shift.scheduled.get(slot)
        if scheduled is None:
            continue
        if slot in IN_SLOTS:
            late = minute_of_day(at) - minute_of_day(scheduled)
            if late > shift.grace_minutes:
                total += late
        else:
            early = minute_of_day(scheduled) - minute_of_day(at)
            if early > 0:
                total += early
    return total


@dataclass(frozen=True)
class CreditContext:
    shift: ResolvedShift
    punched: frozenset[DaySlot]
    has_leave: bool = False
    has_holiday: bool = False
    has_travel: bool = False


CreditPolicy = Callable[[CreditContext], float]


def default_credit_policy(ctx: CreditContext) -> float:
    """Grade a day from the per-shift credits of its assignments."""
    if ctx.shift.is_empty or ctx.has_leave or ctx.has_holiday:
        return 0.0
    p = ctx.punched
    if not p:
        return 1.0 if ctx.has_travel else 0.0

    total = 0.0
    if ctx.shift.has_mode(ShiftMode.ampm):
        half = ctx.shift.credits_for(ShiftMode.ampm) / 2
        total += half * (DaySlot.am_in in p) + half * (DaySlot.pm_out in p)

    am = ctx.shift.credits_for(ShiftMode.am)
    pm = ctx.shift.credits_for(ShiftMode.pm)
    if am or pm:
        am_pair = DaySlot.am_in in p and DaySlot.am_out in p
        pm_pair = DaySlot.pm_in in p and DaySlot.pm_out in p
        if DaySlot.am_in in p and pm_pair:
            total += am + pm
        elif am_pair and DaySlot.pm_out in p:
            total += am + pm
        elif DaySlot.am_out in p and pm_pair:
            total += (am + pm) / 2
        elif am_pair and DaySlot.pm_in in p:
            total += (am + pm) / 2
        elif DaySlot.am_in in p and DaySlot.pm_out in p:
            total += am + pm
        else:
            total += (am if am_pair else 0.0) + (pm if pm_pair else 0.0)

    return round(total, 2)


def pattern_key(punched: Iterable[DaySlot]) -> str:
    """Stable key for a punched-slot pattern, e.g. ``AM_IN+PM_OUT``."""
    present = set(punched)
    return "+".join(slot.value for slot in DAY_SLOTS if slot in present)


def grading_table_policy(table: Mapping[str, float]) -> CreditPolicy:
    """Build a policy from a caller-supplied ``pattern_key → credit`` table.

    Patterns missing from the table earn nothing; leave and holiday days
    earn nothing either.
    """

    def _policy(ctx: CreditContext) -> float:
        if ctx.shift.is_empty or ctx.has_leave or ctx.has_holiday:
            return 0.0
        return round(float(table.get(pattern_key(ctx.punched), 0.0)), 2)

    return _policy


# ═════════════════════════════════════════════════════════════════════
# Remarks
# ═════════════════════════════════════════════════════════════════════


def _ref(entry, fallback: str) -> str:
    return entry.reference or entry.display_text or fallback


def build_remarks(
    ctx: DayContext,
    toggles: AnnotationToggles,
    include_weekend: bool = False,
) -> tuple[RemarkEntry, ...]:
    entries: list[RemarkEntry] = []

    def add(kind: RemarkType, text: str, enabled: bool = True) -> None:
        entry = RemarkEntry(type=kind, text=text)
        if enabled and text and entry not in entries:
            entries.append(entry)

    if ctx.is_weekend:
        add(RemarkType.weekend, "Weekend", toggles.weekend)
    if ctx.holidays:
        add(RemarkType.holiday, holiday_label(ctx.holidays), toggles.holiday)
    for locator in ctx.locators:
        add(RemarkType.locator, f"Locator({locator.status.value})", toggles.locator)
    for leave in ctx.leaves:
        text = f"Leave({_ref(leave, 'Leave')})"
        if leave.status == ApprovalStatus.for_approval:
            text = f"{text}: {ApprovalStatus.for_approval.value}"
        add(RemarkType.leave, text, toggles.leave)
    for travel in ctx.travels:
        add(RemarkType.travel, f"Travel: ({_ref(travel, 'Travel')})", toggles.travel)
    for cdo in ctx.cdos:
        add(RemarkType.cdo, f"CDO({_ref(cdo, 'CDO')})", toggles.cdo)
    if ctx.is_absent:
        add(RemarkType.absent, "Absent", toggles.absent)
    if ctx.needs_locator:
        add(RemarkType.action, FILE_A_LOCATOR)

    if not include_weekend and len(entries) > 1:
        entries = [e for e in entries if e.type != RemarkType.weekend]
    return tuple(entries)


# ═════════════════════════════════════════════════════════════════════
# Day resolution
# ═════════════════════════════════════════════════════════════════════


def _punch_value(at: time, slot_flags: set[str], toggles: AnnotationToggles) -> PunchValue:
    badges = []
    if "locator" in slot_flags and toggles.locator:
        badges.append(LOCATOR_BADGE)
    if "fixlog" in slot_flags and toggles.fixlog:
        badges.append(FIXLOG_BADGE)
    return PunchValue(
        time=at.replace(second=0, microsecond=0),
        text=format_time(at),
        locator="locator" in slot_flags,
        fixlog="fixlog" in slot_flags,
        badges=tuple(badges),
    )


def resolve_day(
    day: date,
    *,
    shift: ResolvedShift,
    bucket: DayBuckets,
    exceptions: DayExceptions = NO_EXCEPTIONS,
    toggles: Optional[AnnotationToggles] = None,
    today: date,
    include_weekend_remark: bool = False,
    credit_policy: CreditPolicy = default_credit_policy,
) -> DayRecord:
    """Resolve one date into a DayRecord."""
    toggles = toggles or AnnotationToggles()

    bound = bind_slots(bucket, shift.active_slots, shift.scheduled)
    values, flags = apply_overrides(bound, shift, exceptions)
    ctx = DayContext(day=day, today=today, shift=shift, exceptions=exceptions, values=values)

    annotation = annotate(ctx, toggles)
    slots = {}
    for slot in DAY_SLOTS:
        if slot not in shift.active_slots:
            slots[slot] = InactiveValue()
        elif slot in values:
            slots[slot] = _punch_value(values[slot], flags.get(slot, set()), toggles)
        else:
            slots[slot] = annotation

    credit = credit_policy(
        CreditContext(
            shift=shift,
            punched=frozenset(values),
            has_leave=bool(_approved(ctx.leaves)),
            has_holiday=bool(ctx.holidays),
            has_travel=bool(ctx.travels),
        )
    )
    remark_entries = build_remarks(ctx, toggles, include_weekend_remark)

    return DayRecord(
        date=day,
        slots=slots,
        is_weekend=ctx.is_weekend,
        has_holiday=bool(ctx.holidays),
        late_minutes=late_minutes(values, shift),
        days_credit=credit,
        remarks=REMARK_SEPARATOR.join(entry.text for entry in remark_entries),
        remark_entries=remark_entries,
    )
