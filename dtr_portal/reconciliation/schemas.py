"""Reconciliation Pydantic v2 schemas — engine inputs, view state, report output.

Naming conventions:
  - *Entry            → one uniform exception-source record (tagged by ``kind``)
  - *Value            → one resolved slot cell (tagged by ``type``)
  - *Record / *Report → reconciled output
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dtr_portal.common.constants import (
    EMPTY_CELL,
    AnnotationKind,
    ApprovalStatus,
    CoarseFilter,
    DaySlot,
    RemarkType,
    ReportView,
    ShiftMode,
    SubPeriod,
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ═════════════════════════════════════════════════════════════════════
# Source shapes
# ═════════════════════════════════════════════════════════════════════


class TimePunch(_Frozen):
    """A single clock event, read-only to the engine."""

    employee_id: uuid.UUID
    timestamp: datetime


class SlotWindow(_Frozen):
    """Display range for one slot (start ≤ end, inclusive)."""

    start: time
    end: time


class ShiftAssignment(_Frozen):
    """One shift held by an employee, with its active slots and schedule."""

    shift_name: str
    mode: ShiftMode
    active_slots: frozenset[DaySlot]
    slot_windows: dict[DaySlot, SlotWindow] = Field(default_factory=dict)
    scheduled: dict[DaySlot, time] = Field(default_factory=dict)
    credits: float = 1.0
    grace_minutes: int = 0
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    def is_effective_on(self, day: date) -> bool:
        if self.effective_from is not None and day < self.effective_from:
            return False
        if self.effective_to is not None and day > self.effective_to:
            return False
        return True


# ── Exception records (tagged variants) ─────────────────────────────

class _EntryBase(_Frozen):
    employee_id: Optional[uuid.UUID] = None
    date: date
    status: ApprovalStatus = ApprovalStatus.approved
    display_text: str = ""
    reference: Optional[str] = None

    @property
    def is_approved(self) -> bool:
        return self.status == ApprovalStatus.approved

    def applies_to(self, day: date) -> bool:
        return self.date == day


class LocatorEntry(_EntryBase):
    kind: Literal["locator"] = "locator"
    departure: time
    arrival: time

    def covers(self, moment: time) -> bool:
        return self.departure <= moment <= self.arrival


class FixLogEntry(_EntryBase):
    kind: Literal["fixlog"] = "fixlog"
    slot_times: dict[DaySlot, time] = Field(default_factory=dict)


class LeaveEntry(_EntryBase):
    kind: Literal["leave"] = "leave"
    is_official_business: bool = False


class TravelEntry(_EntryBase):
    kind: Literal["travel"] = "travel"


class CdoEntry(_EntryBase):
    kind: Literal["cdo"] = "cdo"


class HolidayEntry(_EntryBase):
    kind: Literal["holiday"] = "holiday"
    recurring: bool = False
    is_work_suspension: bool = False

    def applies_to(self, day: date) -> bool:
        if self.recurring:
            return (self.date.month, self.date.day) == (day.month, day.day)
        return self.date == day


ExceptionRecord = Annotated[
    Union[LocatorEntry, FixLogEntry, LeaveEntry, TravelEntry, CdoEntry, HolidayEntry],
    Field(discriminator="kind"),
]


class ReconciliationSnapshot(_Frozen):
    """Everything the pure engine needs for one employee and window."""

    employee_id: uuid.UUID
    dates: tuple[date, ...]
    punches: tuple[TimePunch, ...] = ()
    shifts: tuple[ShiftAssignment, ...] = ()
    exceptions: tuple[ExceptionRecord, ...] = ()
    failed_sources: tuple[str, ...] = ()


# ═════════════════════════════════════════════════════════════════════
# View state
# ═════════════════════════════════════════════════════════════════════


class AnnotationToggles(_Frozen):
    """Per-category visibility switches; all categories shown by default."""

    locator: bool = True
    fixlog: bool = True
    leave: bool = True
    travel: bool = True
    cdo: bool = True
    holiday: bool = True
    weekend: bool = True
    absent: bool = True


class ViewState(_Frozen):
    """Caller-owned selection passed into the reconciliation boundary."""

    filter: CoarseFilter = CoarseFilter.this_month
    period: SubPeriod = SubPeriod.full
    view: ReportView = ReportView.annotated
    toggles: AnnotationToggles = Field(default_factory=AnnotationToggles)
    include_weekend_remark: bool = False
    now: Optional[datetime] = None


# ═════════════════════════════════════════════════════════════════════
# Output
# ═════════════════════════════════════════════════════════════════════


class PunchValue(_Frozen):
    type: Literal["punch"] = "punch"
    time: time
    text: str
    locator: bool = False
    fixlog: bool = False
    badges: tuple[str, ...] = ()


class AnnotationValue(_Frozen):
    type: Literal["annotation"] = "annotation"
    kind: Optional[AnnotationKind] = None
    text: str = EMPTY_CELL


class InactiveValue(_Frozen):
    type: Literal["inactive"] = "inactive"
    text: str = EMPTY_CELL


SlotValue = Annotated[
    Union[PunchValue, AnnotationValue, InactiveValue],
    Field(discriminator="type"),
]


class RemarkEntry(_Frozen):
    type: RemarkType
    text: str


class DayRecord(_Frozen):
    """One reconciled calendar day."""

    date: date
    slots: dict[DaySlot, SlotValue]
    is_weekend: bool
    has_holiday: bool
    late_minutes: int = 0
    days_credit: float = 0.0
    remarks: str = ""
    remark_entries: tuple[RemarkEntry, ...] = ()


class BasicDayRecord(_Frozen):
    """Punch times only, for the plain DTR print."""

    date: date
    am_in: Optional[str] = None
    am_out: Optional[str] = None
    pm_in: Optional[str] = None
    pm_out: Optional[str] = None
    late_minutes: int = 0
    days_credit: float = 0.0


class RawLogDay(_Frozen):
    date: date
    am: tuple[str, ...] = ()
    pm: tuple[str, ...] = ()
    remarks: str = ""


class _ReportHeader(_Frozen):
    employee_id: uuid.UUID
    filter: CoarseFilter
    period: SubPeriod
    start_date: date
    end_date: date
    shift_name: str = ""
    schedule: dict[DaySlot, SlotWindow] = Field(default_factory=dict)
    failed_sources: tuple[str, ...] = ()


class AnnotatedReport(_ReportHeader):
    view: Literal["annotated"] = "annotated"
    days: tuple[DayRecord, ...]
    total_days: float
    total_late_minutes: int


class BasicReport(_ReportHeader):
    view: Literal["basic"] = "basic"
    days: tuple[BasicDayRecord, ...]
    total_days: float
    total_late_minutes: int


class RawLogsReport(_ReportHeader):
    days: tuple[RawLogDay, ...]
