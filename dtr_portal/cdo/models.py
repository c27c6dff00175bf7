"""CDO ledger ORM models: CdoTransaction, CdoWorkdate, CdoConsumeEntry.

Both mutable rows carry a ``version`` column wired as SQLAlchemy's
``version_id_col``: every UPDATE is a compare-and-swap on it.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dtr_portal.common.constants import ApprovalStatus, CreatedBy
from dtr_portal.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


_approval_status = sa.Enum(
    ApprovalStatus, name="approval_status", values_callable=_enum_values
)
_created_by = sa.Enum(CreatedBy, name="created_by_kind", values_callable=_enum_values)


class CdoTransaction(Base):
    __tablename__ = "cdo_transactions"
    __table_args__ = (
        sa.CheckConstraint("earned_credit >= 1", name="ck_cdo_earned_positive"),
        sa.CheckConstraint(
            "used_credit >= 0 AND used_credit <= earned_credit",
            name="ck_cdo_used_within_earned",
        ),
        sa.Index("ix_cdo_transactions_employee", "employee_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    cdo_no: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    purpose: Mapped[Optional[str]] = mapped_column(sa.Text)
    earned_credit: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    used_credit: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    is_consumed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        _approval_status, nullable=False, default=ApprovalStatus.for_approval
    )
    created_by: Mapped[CreatedBy] = mapped_column(
        _created_by, nullable=False, default=CreatedBy.portal
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    workdates: Mapped[list[CdoWorkdate]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="CdoWorkdate.work_date",
    )
    entries: Mapped[list[CdoConsumeEntry]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="CdoConsumeEntry.use_date",
    )


class CdoWorkdate(Base):
    __tablename__ = "cdo_workdates"
    __table_args__ = (
        sa.UniqueConstraint("transaction_id", "work_date", name="uq_cdo_workdate"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("cdo_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    # Relationships
    transaction: Mapped[CdoTransaction] = relationship(back_populates="workdates")


class CdoConsumeEntry(Base):
    __tablename__ = "cdo_consume_entries"
    __table_args__ = (
        sa.Index("ix_cdo_entries_tx_date", "transaction_id", "use_date"),
        sa.Index("ix_cdo_entries_emp_date", "employee_id", "use_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("cdo_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    use_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        _approval_status, nullable=False, default=ApprovalStatus.for_approval
    )
    created_by: Mapped[CreatedBy] = mapped_column(
        _created_by, nullable=False, default=CreatedBy.portal
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    transaction: Mapped[CdoTransaction] = relationship(back_populates="entries")
