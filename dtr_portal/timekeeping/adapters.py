"""Adapters projecting timekeeping rows onto the reconciliation engine's shapes.

Each upstream module stores its records differently (a leave spans a list
of dates, a travel order lists participants, a fix log carries four
optional times). The overlay only ever sees the uniform entries built here.
"""

from __future__ import annotations

import re
import uuid
from datetime import date
from typing import Iterable

from dtr_portal.common.constants import ApprovalStatus, DaySlot, normalize_status
from dtr_portal.reconciliation.schemas import (
    FixLogEntry,
    HolidayEntry,
    LeaveEntry,
    LocatorEntry,
    ShiftAssignment,
    TimePunch,
    TravelEntry,
)
from dtr_portal.reconciliation.shifts import build_assignment
from dtr_portal.timekeeping.models import (
    EmployeeShiftAssignment,
    FixLogRequest,
    Holiday,
    LeaveRecord,
    LocatorSlip,
    PunchLog,
    TravelOrder,
)

WORK_SUSPENSION_TYPE = "work_suspension"
_OFFICIAL_BUSINESS = re.compile(r"\bob\b|official business", re.IGNORECASE)


def is_official_business(leave_type: str) -> bool:
    return bool(_OFFICIAL_BUSINESS.search(leave_type or ""))


def punch_from_row(row: PunchLog) -> TimePunch:
    return TimePunch(employee_id=row.employee_id, timestamp=row.punched_at)


def assignment_from_row(row: EmployeeShiftAssignment) -> ShiftAssignment:
    shift = row.shift
    return build_assignment(
        shift_name=shift.name,
        mode=shift.mode,
        checkin=shift.checkin_time,
        checkout=shift.checkout_time,
        break_out=shift.break_out_time,
        break_in=shift.break_in_time,
        credits=shift.credits if shift.credits is not None else 1.0,
        grace_minutes=shift.grace_minutes or 0,
        windows=shift.slot_windows,
        effective_from=row.effective_from,
        effective_to=row.effective_to,
    )


def holiday_entry(row: Holiday) -> HolidayEntry:
    return HolidayEntry(
        date=row.holiday_date,
        status=ApprovalStatus.approved,
        display_text=row.name,
        recurring=bool(row.is_recurring),
        is_work_suspension=row.holiday_type == WORK_SUSPENSION_TYPE,
    )


def locator_entry(row: LocatorSlip) -> LocatorEntry:
    return LocatorEntry(
        employee_id=row.employee_id,
        date=row.locator_date,
        status=normalize_status(row.status),
        display_text=row.destination or row.locator_no,
        reference=row.locator_no,
        departure=row.departure_time,
        arrival=row.arrival_time,
    )


def fixlog_entry(row: FixLogRequest) -> FixLogEntry:
    times = {
        DaySlot.am_in: row.am_checkin,
        DaySlot.am_out: row.am_checkout,
        DaySlot.pm_in: row.pm_checkin,
        DaySlot.pm_out: row.pm_checkout,
    }
    return FixLogEntry(
        employee_id=row.employee_id,
        date=row.log_date,
        status=normalize_status(row.status),
        display_text=row.reason or "Fix log",
        slot_times={slot: at for slot, at in times.items() if at is not None},
    )


def leave_entries(row: LeaveRecord, start: date, end: date) -> list[LeaveEntry]:
    """One entry per covered date inside the window."""
    status = normalize_status(row.status)
    official = is_official_business(row.leave_type)
    return [
        LeaveEntry(
            employee_id=row.employee_id,
            date=d.leave_date,
            status=status,
            display_text=row.leave_type,
            reference=row.leave_no,
            is_official_business=official,
        )
        for d in sorted(row.dates, key=lambda d: d.leave_date)
        if start <= d.leave_date <= end
    ]


def travel_entries(
    row: TravelOrder,
    employee_id: uuid.UUID,
    start: date,
    end: date,
) -> list[TravelEntry]:
    status = normalize_status(row.status)
    return [
        TravelEntry(
            employee_id=employee_id,
            date=d.travel_date,
            status=status,
            display_text=row.destination or row.travel_no,
            reference=row.travel_no,
        )
        for d in sorted(row.dates, key=lambda d: d.travel_date)
        if start <= d.travel_date <= end
    ]


def flatten(groups: Iterable[Iterable]) -> list:
    return [item for group in groups for item in group]
