"""Reconciliation aggregator — snapshot in, ordered report out.

Pure and deterministic: the same snapshot, view state and "today" always
produce an identical report. Nothing here touches the database.
"""

from __future__ import annotations

import logging
from datetime import date, tzinfo
from typing import Optional, Union

from dtr_portal.common.constants import DAY_SLOTS, DaySlot, ReportView, SubPeriod
from dtr_portal.reconciliation.overlay import (
    NO_EXCEPTIONS,
    CreditPolicy,
    default_credit_policy,
    index_exceptions,
    resolve_day,
)
from dtr_portal.reconciliation.punches import DayBuckets, bucketize, raw_logs
from dtr_portal.reconciliation.schemas import (
    AnnotatedReport,
    BasicDayRecord,
    BasicReport,
    DayRecord,
    InactiveValue,
    PunchValue,
    RawLogsReport,
    ReconciliationSnapshot,
    SlotWindow,
    ViewState,
)
from dtr_portal.reconciliation.shifts import NO_SHIFT, ResolvedShift, resolve_shift

logger = logging.getLogger(__name__)

Report = Union[AnnotatedReport, BasicReport]


def _inactive_day(day: date) -> DayRecord:
    return DayRecord(
        date=day,
        slots={slot: InactiveValue() for slot in DAY_SLOTS},
        is_weekend=day.weekday() >= 5,
        has_holiday=False,
    )


def _header_shift(snapshot: ReconciliationSnapshot) -> ResolvedShift:
    """The merged shift of the latest window date that has one."""
    for day in reversed(snapshot.dates):
        resolved = resolve_shift(snapshot.shifts, day)
        if not resolved.is_empty:
            return resolved
    return NO_SHIFT


def _header(
    snapshot: ReconciliationSnapshot,
    view_state: ViewState,
    period: SubPeriod,
) -> dict:
    shift = _header_shift(snapshot)
    schedule: dict[DaySlot, SlotWindow] = dict(shift.windows)
    return dict(
        employee_id=snapshot.employee_id,
        filter=view_state.filter,
        period=period,
        start_date=snapshot.dates[0],
        end_date=snapshot.dates[-1],
        shift_name=shift.shift_name,
        schedule=schedule,
        failed_sources=snapshot.failed_sources,
    )


def reconcile_days(
    snapshot: ReconciliationSnapshot,
    view_state: ViewState,
    *,
    today: date,
    tz: tzinfo,
    credit_policy: CreditPolicy = default_credit_policy,
) -> list[DayRecord]:
    """One DayRecord per window date, in date order."""
    buckets = bucketize(snapshot.punches, snapshot.dates, tz)
    exceptions = index_exceptions(snapshot.exceptions, snapshot.dates)
    if not snapshot.shifts:
        logger.warning(
            "Employee %s has no shift assignment; every slot is inactive",
            snapshot.employee_id,
        )

    days: list[DayRecord] = []
    for day in snapshot.dates:
        try:
            record = resolve_day(
                day,
                shift=resolve_shift(snapshot.shifts, day),
                bucket=buckets.get(day, DayBuckets()),
                exceptions=exceptions.get(day, NO_EXCEPTIONS),
                toggles=view_state.toggles,
                today=today,
                include_weekend_remark=view_state.include_weekend_remark,
                credit_policy=credit_policy,
            )
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Could not reconcile %s for %s (%s); marking the day inactive",
                day, snapshot.employee_id, exc,
            )
            record = _inactive_day(day)
        days.append(record)
    return days


def to_basic(record: DayRecord) -> BasicDayRecord:
    """Strip annotations, keeping punch times only."""

    def _text(slot: DaySlot) -> Optional[str]:
        value = record.slots.get(slot)
        return value.text if isinstance(value, PunchValue) else None

    return BasicDayRecord(
        date=record.date,
        am_in=_text(DaySlot.am_in),
        am_out=_text(DaySlot.am_out),
        pm_in=_text(DaySlot.pm_in),
        pm_out=_text(DaySlot.pm_out),
        late_minutes=record.late_minutes,
        days_credit=record.days_credit,
    )


def reconcile(
    snapshot: ReconciliationSnapshot,
    view_state: ViewState,
    *,
    today: date,
    tz: tzinfo,
    period: Optional[SubPeriod] = None,
    credit_policy: CreditPolicy = default_credit_policy,
) -> Report:
    """Build the annotated or basic report with period totals."""
    days = reconcile_days(
        snapshot, view_state, today=today, tz=tz, credit_policy=credit_policy,
    )
    header = _header(snapshot, view_state, period or view_state.period)
    total_days = round(sum(d.days_credit for d in days), 2)
    total_late = sum(d.late_minutes for d in days)

    if view_state.view == ReportView.basic:
        return BasicReport(
            **header,
            days=tuple(to_basic(d) for d in days),
            total_days=total_days,
            total_late_minutes=total_late,
        )
    return AnnotatedReport(
        **header,
        days=tuple(days),
        total_days=total_days,
        total_late_minutes=total_late,
    )


def raw_logs_report(
    snapshot: ReconciliationSnapshot,
    view_state: ViewState,
    *,
    tz: tzinfo,
    period: Optional[SubPeriod] = None,
) -> RawLogsReport:
    buckets = bucketize(snapshot.punches, snapshot.dates, tz)
    return RawLogsReport(
        **_header(snapshot, view_state, period or view_state.period),
        days=tuple(raw_logs(buckets)),
    )
