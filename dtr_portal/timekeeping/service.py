"""Timekeeping source readers — one query per reconciliation source.

Every reader takes its own session so the aggregator can run them
concurrently, and returns engine-shaped records via the adapters.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, tzinfo

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dtr_portal.reconciliation.schemas import (
    FixLogEntry,
    HolidayEntry,
    LeaveEntry,
    LocatorEntry,
    ShiftAssignment,
    TimePunch,
    TravelEntry,
)
from dtr_portal.timekeeping import adapters
from dtr_portal.timekeeping.models import (
    EmployeeShiftAssignment,
    FixLogRequest,
    Holiday,
    LeaveRecord,
    LeaveRecordDate,
    LocatorSlip,
    PunchLog,
    ShiftSchedule,
    TravelOrder,
    TravelOrderDate,
    TravelParticipant,
)


class TimekeepingSources:
    """Async readers for punches, shifts and the exception sources."""

    @staticmethod
    async def fetch_punches(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        tz: tzinfo,
    ) -> list[TimePunch]:
        """Punches from local midnight of ``start`` up to local midnight after ``end``."""
        lower = datetime.combine(start, time.min, tzinfo=tz)
        upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz)
        result = await db.execute(
            select(PunchLog)
            .where(
                PunchLog.employee_id == employee_id,
                PunchLog.punched_at >= lower,
                PunchLog.punched_at < upper,
            )
            .order_by(PunchLog.punched_at)
        )
        return [adapters.punch_from_row(row) for row in result.scalars().all()]

    @staticmethod
    async def fetch_shifts(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[ShiftAssignment]:
        """Active assignments whose effective range overlaps the window."""
        result = await db.execute(
            select(EmployeeShiftAssignment)
            .join(ShiftSchedule, EmployeeShiftAssignment.shift_id == ShiftSchedule.id)
            .where(
                EmployeeShiftAssignment.employee_id == employee_id,
                EmployeeShiftAssignment.is_active.is_(True),
                ShiftSchedule.is_active.is_(True),
                or_(
                    EmployeeShiftAssignment.effective_from.is_(None),
                    EmployeeShiftAssignment.effective_from <= end,
                ),
                or_(
                    EmployeeShiftAssignment.effective_to.is_(None),
                    EmployeeShiftAssignment.effective_to >= start,
                ),
            )
            .options(selectinload(EmployeeShiftAssignment.shift))
            .order_by(ShiftSchedule.checkin_time, ShiftSchedule.name)
        )
        return [adapters.assignment_from_row(row) for row in result.scalars().all()]

    @staticmethod
    async def fetch_holidays(
        db: AsyncSession,
        start: date,
        end: date,
    ) -> list[HolidayEntry]:
        """Dated holidays inside the window plus every recurring holiday."""
        result = await db.execute(
            select(Holiday)
            .where(
                or_(
                    Holiday.is_recurring.is_(True),
                    Holiday.holiday_date.between(start, end),
                )
            )
            .order_by(Holiday.holiday_date, Holiday.name)
        )
        return [adapters.holiday_entry(row) for row in result.scalars().all()]

    @staticmethod
    async def fetch_locators(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[LocatorEntry]:
        result = await db.execute(
            select(LocatorSlip)
            .where(
                LocatorSlip.employee_id == employee_id,
                LocatorSlip.locator_date.between(start, end),
            )
            .order_by(LocatorSlip.locator_date, LocatorSlip.departure_time)
        )
        return [adapters.locator_entry(row) for row in result.scalars().all()]

    @staticmethod
    async def fetch_fixlogs(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[FixLogEntry]:
        result = await db.execute(
            select(FixLogRequest)
            .where(
                FixLogRequest.employee_id == employee_id,
                FixLogRequest.log_date.between(start, end),
            )
            .order_by(FixLogRequest.log_date, FixLogRequest.created_at)
        )
        return [adapters.fixlog_entry(row) for row in result.scalars().all()]

    @staticmethod
    async def fetch_leaves(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[LeaveEntry]:
        result = await db.execute(
            select(LeaveRecord)
            .where(
                LeaveRecord.employee_id == employee_id,
                LeaveRecord.id.in_(
                    select(LeaveRecordDate.leave_id).where(
                        LeaveRecordDate.leave_date.between(start, end)
                    )
                ),
            )
            .options(selectinload(LeaveRecord.dates))
            .order_by(LeaveRecord.leave_no)
        )
        return adapters.flatten(
            adapters.leave_entries(row, start, end) for row in result.scalars().all()
        )

    @staticmethod
    async def fetch_travels(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[TravelEntry]:
        result = await db.execute(
            select(TravelOrder)
            .where(
                TravelOrder.id.in_(
                    select(TravelParticipant.travel_id).where(
                        TravelParticipant.employee_id == employee_id
                    )
                ),
                TravelOrder.id.in_(
                    select(TravelOrderDate.travel_id).where(
                        TravelOrderDate.travel_date.between(start, end)
                    )
                ),
            )
            .options(selectinload(TravelOrder.dates))
            .order_by(TravelOrder.travel_no)
        )
        return adapters.flatten(
            adapters.travel_entries(row, employee_id, start, end)
            for row in result.scalars().all()
        )
