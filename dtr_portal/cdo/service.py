"""CDO ledger service layer — earn, consume, approve, expire.

Business logic:
  - Earning: one credit per distinct workdate, created "For Approval",
    numbered ``YYYYMMDDDO-NNN`` and expiring at the end of its year
  - Consuming: only from approved, unexpired transactions; pending
    entries reserve credit so approvals can never oversell
  - ``used_credit`` moves when a consume entry is approved (+1) or leaves
    the approved state (-1), clamped to ``[0, earned_credit]``
  - Expiry is a read-time override: stored counts are never touched
  - Every mutation runs under a per-transaction lock, a row lock and the
    version-column compare-and-swap; a lost race is retried once
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Awaitable, Callable, Hashable, Iterable, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from dtr_portal.auth.dependencies import Actor
from dtr_portal.cdo.locks import ledger_locks
from dtr_portal.cdo.models import CdoConsumeEntry, CdoTransaction, CdoWorkdate
from dtr_portal.cdo.schemas import CdoConsumeEntryResponse, CdoTransactionResponse
from dtr_portal.common.audit import create_audit_entry
from dtr_portal.common.constants import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    ApprovalStatus,
    CreatedBy,
)
from dtr_portal.common.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    EmptyWorkdateSetError,
    ExpiredError,
    ForbiddenException,
    InsufficientCreditsError,
    MissingReasonError,
    NotFoundException,
    TransactionNotApprovedError,
    ValidationException,
)
from dtr_portal.config import settings
from dtr_portal.reconciliation.schemas import CdoEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

CDO_NO_INFIX = "DO-"
MAX_ATTEMPTS = 2
_CDO_NO_LOCK = "cdo-no"


# ── Helpers ─────────────────────────────────────────────────────────

def _now(now: Optional[datetime] = None) -> datetime:
    return _aware(now) if now is not None else datetime.now(settings.tz)


def _aware(moment: datetime) -> datetime:
    """Attach the portal zone to naive timestamps (SQLite drops offsets)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=settings.tz)
    return moment


def expiry_for(created: datetime) -> datetime:
    """Credits lapse at the last instant of December 31 of the earning year."""
    local = _aware(created).astimezone(settings.tz)
    return datetime(local.year, 12, 31, 23, 59, 59, 999000, tzinfo=settings.tz)


def is_expired(tx: CdoTransaction, at: Optional[datetime] = None) -> bool:
    return _now(at) > _aware(tx.expires_at)


def remaining_of(tx: CdoTransaction, at: Optional[datetime] = None) -> int:
    if is_expired(tx, at):
        return 0
    return max(tx.earned_credit - tx.used_credit, 0)


def pending_count(tx: CdoTransaction) -> int:
    return sum(1 for e in tx.entries if e.status == ApprovalStatus.for_approval)


def available_of(tx: CdoTransaction, at: Optional[datetime] = None) -> int:
    """Remaining credit minus what pending entries already reserve."""
    return max(remaining_of(tx, at) - pending_count(tx), 0)


def _ensure_owner(actor: Actor, employee_id: uuid.UUID) -> None:
    if not actor.is_staff and actor.employee_id != employee_id:
        raise ForbiddenException("You can only manage your own CDO credits.")


def _distinct_dates(values: Iterable[date]) -> list[date]:
    return sorted(set(values))


def _sync_consumed(tx: CdoTransaction) -> None:
    tx.used_credit = min(max(tx.used_credit, 0), tx.earned_credit)
    tx.is_consumed = tx.used_credit >= tx.earned_credit


async def _serialized(
    db: AsyncSession,
    key: Hashable,
    operation: Callable[[], Awaitable[T]],
    *,
    entity_type: str,
    entity_id: object,
) -> T:
    """Run ``operation`` and commit while holding the lock for ``key``.

    A StaleDataError (the version compare-and-swap lost) rolls back and
    retries once; a second loss surfaces as ConcurrentModificationError.
    Any other failure rolls back so no partial mutation survives.
    """
    async with ledger_locks.hold(key):
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                result = await operation()
                await db.commit()
                return result
            except StaleDataError:
                await db.rollback()
                if attempt == MAX_ATTEMPTS:
                    raise ConcurrentModificationError(entity_type, entity_id)
                logger.warning(
                    "Concurrent update on %s %s; retrying (attempt %d)",
                    entity_type, entity_id, attempt,
                )
            except Exception:
                await db.rollback()
                raise
    raise ConcurrentModificationError(entity_type, entity_id)


# ═════════════════════════════════════════════════════════════════════
# CdoLedgerService
# ═════════════════════════════════════════════════════════════════════


class CdoLedgerService:
    """Async CDO credit ledger operations."""

    # ── Loading ─────────────────────────────────────────────────────

    @staticmethod
    async def _load_transaction(
        db: AsyncSession,
        transaction_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> CdoTransaction:
        stmt = (
            select(CdoTransaction)
            .where(CdoTransaction.id == transaction_id)
            .options(
                selectinload(CdoTransaction.workdates),
                selectinload(CdoTransaction.entries),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        tx = (await db.execute(stmt)).scalars().first()
        if tx is None:
            raise NotFoundException("CDO transaction", transaction_id)
        return tx

    @staticmethod
    async def _entry_transaction_id(db: AsyncSession, entry_id: uuid.UUID) -> uuid.UUID:
        result = await db.execute(
            select(CdoConsumeEntry.transaction_id).where(CdoConsumeEntry.id == entry_id)
        )
        transaction_id = result.scalar_one_or_none()
        if transaction_id is None:
            raise NotFoundException("CDO consume entry", entry_id)
        return transaction_id

    @staticmethod
    def _find_entry(tx: CdoTransaction, entry_id: uuid.UUID) -> CdoConsumeEntry:
        for entry in tx.entries:
            if entry.id == entry_id:
                return entry
        raise NotFoundException("CDO consume entry", entry_id)

    @staticmethod
    async def _next_cdo_no(db: AsyncSession, day: date) -> str:
        prefix = f"{day:%Y%m%d}{CDO_NO_INFIX}"
        count = (
            await db.execute(
                select(func.count())
                .select_from(CdoTransaction)
                .where(CdoTransaction.cdo_no.like(f"{prefix}%"))
            )
        ).scalar_one()
        return f"{prefix}{count + 1:03d}"

    @staticmethod
    async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> CdoTransaction:
        return await CdoLedgerService._load_transaction(db, transaction_id)

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[CdoTransaction]:
        """All of an employee's transactions, newest first, with entries loaded."""
        result = await db.execute(
            select(CdoTransaction)
            .where(CdoTransaction.employee_id == employee_id)
            .options(
                selectinload(CdoTransaction.workdates),
                selectinload(CdoTransaction.entries),
            )
            .order_by(CdoTransaction.created_at.desc(), CdoTransaction.cdo_no.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ── Queries ─────────────────────────────────────────────────────

    @staticmethod
    async def remaining_credits(
        db: AsyncSession,
        transaction_id: uuid.UUID,
        at: Optional[datetime] = None,
    ) -> int:
        """0 once expired, else ``max(earned - used, 0)``."""
        tx = await CdoLedgerService._load_transaction(db, transaction_id)
        return remaining_of(tx, at)

    @staticmethod
    async def approved_usage(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[CdoEntry]:
        """Approved consume entries inside the window, as overlay records."""
        result = await db.execute(
            select(CdoConsumeEntry, CdoTransaction.cdo_no)
            .join(CdoTransaction, CdoConsumeEntry.transaction_id == CdoTransaction.id)
            .where(
                CdoConsumeEntry.employee_id == employee_id,
                CdoConsumeEntry.status == ApprovalStatus.approved,
                CdoConsumeEntry.use_date.between(start, end),
            )
            .order_by(CdoConsumeEntry.use_date, CdoTransaction.cdo_no)
        )
        return [
            CdoEntry(
                employee_id=entry.employee_id,
                date=entry.use_date,
                status=entry.status,
                display_text=entry.reason,
                reference=cdo_no or f"CDO-{entry.id}",
            )
            for entry, cdo_no in result.all()
        ]

    @staticmethod
    def to_response(tx: CdoTransaction, at: Optional[datetime] = None) -> CdoTransactionResponse:
        return CdoTransactionResponse(
            id=tx.id,
            cdo_no=tx.cdo_no,
            employee_id=tx.employee_id,
            title=tx.title,
            purpose=tx.purpose,
            earned_credit=tx.earned_credit,
            used_credit=tx.used_credit,
            is_consumed=tx.is_consumed,
            status=tx.status,
            created_by=tx.created_by,
            expires_at=_aware(tx.expires_at),
            workdates=[w.work_date for w in tx.workdates],
            entries=[CdoConsumeEntryResponse.model_validate(e) for e in tx.entries],
            remaining_credits=remaining_of(tx, at),
            is_expired=is_expired(tx, at),
        )

    # ── Earn transactions ───────────────────────────────────────────

    @staticmethod
    async def create_earn_transaction(
        db: AsyncSession,
        *,
        actor: Actor,
        employee_id: uuid.UUID,
        title: str,
        purpose: Optional[str],
        workdates: Iterable[date],
        now: Optional[datetime] = None,
    ) -> CdoTransaction:
        """Record credits earned on ``workdates``; one credit per distinct date."""
        _ensure_owner(actor, employee_id)
        days = _distinct_dates(workdates)
        if not days:
            raise EmptyWorkdateSetError()
        if not (title or "").strip():
            raise ValidationException({"title": ["Title must not be blank."]})

        created = _now(now)

        async def _create() -> CdoTransaction:
            tx = CdoTransaction(
                cdo_no=await CdoLedgerService._next_cdo_no(db, created.date()),
                employee_id=employee_id,
                title=title.strip(),
                purpose=purpose,
                earned_credit=len(days),
                used_credit=0,
                is_consumed=False,
                status=ApprovalStatus.for_approval,
                created_by=actor.created_by,
                created_by_id=actor.employee_id,
                expires_at=expiry_for(created),
                workdates=[CdoWorkdate(work_date=d) for d in days],
                entries=[],
            )
            db.add(tx)
            await db.flush()
            await create_audit_entry(
                db,
                action="create",
                entity_type="cdo_transaction",
                entity_id=tx.id,
                actor_id=actor.employee_id,
                new_values={
                    "cdo_no": tx.cdo_no,
                    "earned_credit": tx.earned_credit,
                    "workdates": [d.isoformat() for d in days],
                },
            )
            logger.info("CDO %s created for %s with %d credit(s)", tx.cdo_no, employee_id, len(days))
            return tx

        return await _serialized(
            db, _CDO_NO_LOCK, _create, entity_type="cdo_transaction", entity_id=employee_id,
        )

    @staticmethod
    async def update_earn_transaction(
        db: AsyncSession,
        *,
        actor: Actor,
        transaction_id: uuid.UUID,
        title: str,
        purpose: Optional[str],
        workdates: Iterable[date],
    ) -> CdoTransaction:
        """Replace title, purpose and workdates while still awaiting approval."""
        days = _distinct_dates(workdates)
        if not days:
            raise EmptyWorkdateSetError()
        if not (title or "").strip():
            raise ValidationException({"title": ["Title must not be blank."]})

        async def _update() -> CdoTransaction:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            _ensure_owner(actor, tx.employee_id)
            if tx.status != ApprovalStatus.for_approval:
                raise ValidationException(
                    {"status": [f"Only transactions awaiting approval can be edited (is '{tx.status.value}')."]}
                )
            old = {"earned_credit": tx.earned_credit, "workdates": [w.work_date.isoformat() for w in tx.workdates]}
            kept = {w.work_date: w for w in tx.workdates}
            tx.workdates = [kept.get(d) or CdoWorkdate(work_date=d) for d in days]
            tx.title = title.strip()
            tx.purpose = purpose
            tx.earned_credit = len(days)
            _sync_consumed(tx)
            await db.flush()
            await create_audit_entry(
                db,
                action="update",
                entity_type="cdo_transaction",
                entity_id=tx.id,
                actor_id=actor.employee_id,
                old_values=old,
                new_values={"earned_credit": tx.earned_credit, "workdates": [d.isoformat() for d in days]},
            )
            return tx

        return await _serialized(
            db, transaction_id, _update, entity_type="cdo_transaction", entity_id=transaction_id,
        )

    @staticmethod
    async def set_transaction_status(
        db: AsyncSession,
        *,
        actor: Actor,
        transaction_id: uuid.UUID,
        status: ApprovalStatus,
    ) -> CdoTransaction:
        """Staff decision on an earn transaction. Re-setting the same status is a no-op."""
        if not actor.is_staff:
            raise ForbiddenException("Only staff can review CDO transactions.")

        async def _set() -> CdoTransaction:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            current = tx.status
            if status == current:
                return tx
            if current in TERMINAL_STATUSES:
                raise ValidationException(
                    {"status": [f"Transaction is already '{current.value}'."]}
                )
            if status == ApprovalStatus.for_approval:
                raise ValidationException(
                    {"status": ["An approved transaction cannot go back to 'For Approval'."]}
                )
            if current == ApprovalStatus.approved:
                live = [e for e in tx.entries if e.status in LIVE_STATUSES]
                if tx.used_credit > 0 or live:
                    raise ValidationException(
                        {"status": ["Credits from this transaction are already in use."]}
                    )

            tx.status = status
            tx.reviewed_by = actor.employee_id
            tx.reviewed_at = _now()
            await db.flush()
            await create_audit_entry(
                db,
                action="status_change",
                entity_type="cdo_transaction",
                entity_id=tx.id,
                actor_id=actor.employee_id,
                old_values={"status": current.value},
                new_values={"status": status.value},
            )
            logger.info("CDO %s: %s → %s", tx.cdo_no, current.value, status.value)
            return tx

        return await _serialized(
            db, transaction_id, _set, entity_type="cdo_transaction", entity_id=transaction_id,
        )

    # ── Consume entries ─────────────────────────────────────────────

    @staticmethod
    async def create_consume_entries(
        db: AsyncSession,
        *,
        actor: Actor,
        transaction_id: uuid.UUID,
        dates: Iterable[date],
        reason: str,
        now: Optional[datetime] = None,
    ) -> list[CdoConsumeEntry]:
        """Use one credit per date; all requested entries are created or none."""
        if not (reason or "").strip():
            raise MissingReasonError()
        days = _distinct_dates(dates)
        if not days:
            raise ValidationException({"dates": ["At least one date is required."]})
        at = _now(now)

        async def _consume() -> list[CdoConsumeEntry]:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            _ensure_owner(actor, tx.employee_id)
            if tx.status != ApprovalStatus.approved:
                raise TransactionNotApprovedError(transaction_id, tx.status.value)
            if is_expired(tx, at):
                raise ExpiredError(transaction_id, _aware(tx.expires_at))

            held = {e.use_date for e in tx.entries if e.status in LIVE_STATUSES}
            for day in days:
                if day in held:
                    raise ConflictError("use_date", day.isoformat())

            available = available_of(tx, at)
            if len(days) > available:
                raise InsufficientCreditsError(len(days), available)

            created = [
                CdoConsumeEntry(
                    employee_id=tx.employee_id,
                    use_date=day,
                    reason=reason.strip(),
                    status=ApprovalStatus.for_approval,
                    created_by=actor.created_by,
                    created_by_id=actor.employee_id,
                )
                for day in days
            ]
            tx.entries.extend(created)
            # Touch the row so the version column guards the reservation too
            tx.updated_at = at
            await db.flush()
            await create_audit_entry(
                db,
                action="consume",
                entity_type="cdo_transaction",
                entity_id=tx.id,
                actor_id=actor.employee_id,
                new_values={
                    "dates": [d.isoformat() for d in days],
                    "created_by": actor.created_by.value,
                },
            )
            logger.info("CDO %s: %d use-date(s) filed", tx.cdo_no, len(days))
            return created

        return await _serialized(
            db, transaction_id, _consume, entity_type="cdo_transaction", entity_id=transaction_id,
        )

    @staticmethod
    def _ensure_entry_editable(actor: Actor, entry: CdoConsumeEntry) -> None:
        if not actor.is_staff and (
            entry.employee_id != actor.employee_id or entry.created_by != CreatedBy.portal
        ):
            raise ForbiddenException("You can only change use-dates you filed yourself.")
        if entry.status != ApprovalStatus.for_approval:
            raise ValidationException(
                {"status": [f"Entry is '{entry.status.value}' and can no longer be changed."]}
            )

    @staticmethod
    async def edit_consume_entry(
        db: AsyncSession,
        *,
        actor: Actor,
        entry_id: uuid.UUID,
        new_date: date,
        new_reason: str,
    ) -> CdoConsumeEntry:
        """Move a pending use-date or reword its reason; counts are untouched."""
        if not (new_reason or "").strip():
            raise MissingReasonError()
        transaction_id = await CdoLedgerService._entry_transaction_id(db, entry_id)

        async def _edit() -> CdoConsumeEntry:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            entry = CdoLedgerService._find_entry(tx, entry_id)
            CdoLedgerService._ensure_entry_editable(actor, entry)
            clash = any(
                other.id != entry.id
                and other.use_date == new_date
                and other.status in LIVE_STATUSES
                for other in tx.entries
            )
            if clash:
                raise ConflictError("use_date", new_date.isoformat())

            old = {"use_date": entry.use_date.isoformat(), "reason": entry.reason}
            entry.use_date = new_date
            entry.reason = new_reason.strip()
            await db.flush()
            await create_audit_entry(
                db,
                action="update",
                entity_type="cdo_consume_entry",
                entity_id=entry.id,
                actor_id=actor.employee_id,
                old_values=old,
                new_values={"use_date": new_date.isoformat(), "reason": entry.reason},
            )
            return entry

        return await _serialized(
            db, transaction_id, _edit, entity_type="cdo_consume_entry", entity_id=entry_id,
        )

    @staticmethod
    async def cancel_consume_entry(
        db: AsyncSession,
        *,
        actor: Actor,
        entry_id: uuid.UUID,
    ) -> CdoConsumeEntry:
        """Withdraw a pending use-date. Cancelling twice is a no-op."""
        transaction_id = await CdoLedgerService._entry_transaction_id(db, entry_id)

        async def _cancel() -> CdoConsumeEntry:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            entry = CdoLedgerService._find_entry(tx, entry_id)
            if entry.status == ApprovalStatus.cancelled:
                return entry
            CdoLedgerService._ensure_entry_editable(actor, entry)
            entry.status = ApprovalStatus.cancelled
            await db.flush()
            await create_audit_entry(
                db,
                action="cancel",
                entity_type="cdo_consume_entry",
                entity_id=entry.id,
                actor_id=actor.employee_id,
                old_values={"status": ApprovalStatus.for_approval.value},
                new_values={"status": ApprovalStatus.cancelled.value},
            )
            return entry

        return await _serialized(
            db, transaction_id, _cancel, entity_type="cdo_consume_entry", entity_id=entry_id,
        )

    @staticmethod
    async def set_consume_entry_status(
        db: AsyncSession,
        *,
        actor: Actor,
        entry_id: uuid.UUID,
        status: ApprovalStatus,
        now: Optional[datetime] = None,
    ) -> CdoConsumeEntry:
        """Staff decision on a use-date; approval is where credit is spent."""
        if not actor.is_staff:
            raise ForbiddenException("Only staff can review CDO use-dates.")
        transaction_id = await CdoLedgerService._entry_transaction_id(db, entry_id)
        at = _now(now)

        async def _set() -> CdoConsumeEntry:
            tx = await CdoLedgerService._load_transaction(db, transaction_id, for_update=True)
            entry = CdoLedgerService._find_entry(tx, entry_id)
            current = entry.status
            old_used = tx.used_credit
            if status == current:
                return entry
            if current in TERMINAL_STATUSES:
                raise ValidationException({"status": [f"Entry is already '{current.value}'."]})
            if status == ApprovalStatus.for_approval:
                raise ValidationException(
                    {"status": ["An approved entry cannot go back to 'For Approval'."]}
                )

            if status == ApprovalStatus.approved:
                if tx.status != ApprovalStatus.approved:
                    raise TransactionNotApprovedError(tx.id, tx.status.value)
                if is_expired(tx, at):
                    raise ExpiredError(tx.id, _aware(tx.expires_at))
                if tx.used_credit + 1 > tx.earned_credit:
                    raise InsufficientCreditsError(1, remaining_of(tx, at))
                tx.used_credit += 1
            elif current == ApprovalStatus.approved:
                tx.used_credit -= 1
            _sync_consumed(tx)

            entry.status = status
            entry.reviewed_by = actor.employee_id
            entry.reviewed_at = at
            await db.flush()
            await create_audit_entry(
                db,
                action="status_change",
                entity_type="cdo_consume_entry",
                entity_id=entry.id,
                actor_id=actor.employee_id,
                old_values={"status": current.value, "used_credit": old_used},
                new_values={"status": status.value, "used_credit": tx.used_credit},
            )
            logger.info(
                "CDO %s use-date %s: %s → %s (used %d/%d)",
                tx.cdo_no, entry.use_date, current.value, status.value,
                tx.used_credit, tx.earned_credit,
            )
            return entry

        return await _serialized(
            db, transaction_id, _set, entity_type="cdo_consume_entry", entity_id=entry_id,
        )
