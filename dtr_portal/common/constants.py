"""Enums and constants for the DTR portal — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from typing import Optional


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


STAFF_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.hr_admin, UserRole.system_admin}
)


# ── Approval workflow ───────────────────────────────────────────────

class ApprovalStatus(str, enum.Enum):
    for_approval = "For Approval"
    approved = "Approved"
    returned = "Returned"
    cancelled = "Cancelled"


TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset(
    {ApprovalStatus.returned, ApprovalStatus.cancelled}
)

# Entries in these states hold a use-date on their transaction
LIVE_STATUSES: frozenset[ApprovalStatus] = frozenset(
    {ApprovalStatus.for_approval, ApprovalStatus.approved}
)


def normalize_status(raw: Optional[str]) -> ApprovalStatus:
    """Map a free-form source status onto the canonical workflow values.

    Blank and ``pending`` mean the record still awaits approval; anything
    else is matched case-insensitively. Unknown values are treated as
    awaiting approval so they never count as approved.
    """
    value = (raw or "").strip().lower()
    if not value or value == "pending":
        return ApprovalStatus.for_approval
    for status in ApprovalStatus:
        if status.value.lower() == value:
            return status
    return ApprovalStatus.for_approval


class CreatedBy(str, enum.Enum):
    portal = "portal"
    staff = "staff"


# ── Daily time record ───────────────────────────────────────────────

class DaySlot(str, enum.Enum):
    am_in = "AM_IN"
    am_out = "AM_OUT"
    pm_in = "PM_IN"
    pm_out = "PM_OUT"


DAY_SLOTS: tuple[DaySlot, ...] = (
    DaySlot.am_in,
    DaySlot.am_out,
    DaySlot.pm_in,
    DaySlot.pm_out,
)

IN_SLOTS: frozenset[DaySlot] = frozenset({DaySlot.am_in, DaySlot.pm_in})


class ShiftMode(str, enum.Enum):
    am = "AM"
    pm = "PM"
    ampm = "AMPM"


class CoarseFilter(str, enum.Enum):
    today = "today"
    last_2_weeks = "last_2_weeks"
    this_month = "this_month"
    last_month = "last_month"


class SubPeriod(str, enum.Enum):
    full = "full"
    first_half = "first_half"
    second_half = "second_half"


class ReportView(str, enum.Enum):
    annotated = "annotated"
    basic = "basic"


class AnnotationKind(str, enum.Enum):
    weekend = "weekend"
    leave = "leave"
    travel = "travel"
    cdo = "cdo"
    holiday = "holiday"
    absent = "absent"


class RemarkType(str, enum.Enum):
    weekend = "weekend"
    holiday = "holiday"
    locator = "locator"
    leave = "leave"
    travel = "travel"
    cdo = "cdo"
    absent = "absent"
    action = "action"


# ── Misc constants ──────────────────────────────────────────────────

NOON_MINUTE = 720                 # minute-of-day splitting AM from PM
EMPTY_CELL = "—"
WEEKEND_DAYS = frozenset({5, 6})  # date.weekday(): Saturday, Sunday
TIME_FORMAT = "%H:%M"
