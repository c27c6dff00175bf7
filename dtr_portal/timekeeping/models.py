"""Timekeeping ORM models: PunchLog, ShiftSchedule, EmployeeShiftAssignment,
Holiday, LocatorSlip, FixLogRequest, LeaveRecord(+dates), TravelOrder(+dates, participants).

These tables are written by the biometric sync and the HR modules; the
reconciliation engine only reads them. Status columns keep the raw text of
the upstream system and are normalised by the adapters.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dtr_portal.common.constants import ShiftMode
from dtr_portal.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PunchLog(Base):
    __tablename__ = "punch_logs"
    __table_args__ = (
        sa.Index("ix_punch_logs_emp_time", "employee_id", "punched_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    punched_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(sa.String(50), default="biometric")
    device_id: Mapped[Optional[str]] = mapped_column(sa.String(50))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class ShiftSchedule(Base):
    __tablename__ = "shift_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    mode: Mapped[ShiftMode] = mapped_column(
        sa.Enum(ShiftMode, name="shift_mode", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    checkin_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    checkout_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    break_out_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    break_in_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    # {"AM_IN": ["04:00", "11:59"], ...}; missing slots use the defaults
    slot_windows: Mapped[Optional[dict]] = mapped_column(JSONB)
    credits: Mapped[float] = mapped_column(sa.Float, default=1.0)
    grace_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    assignments: Mapped[list[EmployeeShiftAssignment]] = relationship(
        back_populates="shift"
    )


class EmployeeShiftAssignment(Base):
    __tablename__ = "employee_shift_assignments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    shift_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("shift_schedules.id"), nullable=False
    )
    effective_from: Mapped[Optional[date]] = mapped_column(sa.Date)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    shift: Mapped[ShiftSchedule] = relationship(back_populates="assignments")


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    holiday_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    # regular | special | work_suspension
    holiday_type: Mapped[str] = mapped_column(sa.String(30), default="regular")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class LocatorSlip(Base):
    __tablename__ = "locator_slips"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    locator_no: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    locator_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    departure_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    arrival_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    destination: Mapped[Optional[str]] = mapped_column(sa.String(255))
    purpose: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[Optional[str]] = mapped_column(sa.String(30))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class FixLogRequest(Base):
    __tablename__ = "fix_log_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    log_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    am_checkin: Mapped[Optional[time]] = mapped_column(sa.Time)
    am_checkout: Mapped[Optional[time]] = mapped_column(sa.Time)
    pm_checkin: Mapped[Optional[time]] = mapped_column(sa.Time)
    pm_checkout: Mapped[Optional[time]] = mapped_column(sa.Time)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[Optional[str]] = mapped_column(sa.String(30))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class LeaveRecord(Base):
    __tablename__ = "leave_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_no: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    leave_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(sa.String(30))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    dates: Mapped[list[LeaveRecordDate]] = relationship(
        back_populates="leave", cascade="all, delete-orphan"
    )


class LeaveRecordDate(Base):
    __tablename__ = "leave_record_dates"
    __table_args__ = (
        sa.UniqueConstraint("leave_id", "leave_date", name="uq_leave_record_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    # Relationships
    leave: Mapped[LeaveRecord] = relationship(back_populates="dates")


class TravelOrder(Base):
    __tablename__ = "travel_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    travel_no: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    destination: Mapped[Optional[str]] = mapped_column(sa.String(255))
    purpose: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[Optional[str]] = mapped_column(sa.String(30))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    dates: Mapped[list[TravelOrderDate]] = relationship(
        back_populates="travel", cascade="all, delete-orphan"
    )
    participants: Mapped[list[TravelParticipant]] = relationship(
        back_populates="travel", cascade="all, delete-orphan"
    )


class TravelOrderDate(Base):
    __tablename__ = "travel_order_dates"
    __table_args__ = (
        sa.UniqueConstraint("travel_id", "travel_date", name="uq_travel_order_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    travel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("travel_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    travel_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    # Relationships
    travel: Mapped[TravelOrder] = relationship(back_populates="dates")


class TravelParticipant(Base):
    __tablename__ = "travel_participants"
    __table_args__ = (
        sa.UniqueConstraint("travel_id", "employee_id", name="uq_travel_participant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    travel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("travel_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Relationships
    travel: Mapped[TravelOrder] = relationship(back_populates="participants")
