"""CDO ledger service tests — earning, consuming, approval flow, expiry,
edit/cancel rules and serialisation of concurrent mutations.

Tests run against SQLite via the shared conftest.py fixtures. After a
failed mutation the session has been rolled back, so transactions are
re-read by id rather than through previously loaded objects.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from dtr_portal.auth.dependencies import Actor
from dtr_portal.cdo.locks import KeyedLocks, ledger_locks
from dtr_portal.cdo.service import CdoLedgerService, _serialized, expiry_for
from dtr_portal.common.audit import AuditTrail
from dtr_portal.common.constants import ApprovalStatus, CreatedBy, UserRole
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
from tests.conftest import TestSessionFactory

TZ = settings.tz
NOW = datetime(2025, 3, 3, 9, 0, tzinfo=TZ)
WORKDATES = [date(2025, 3, 1), date(2025, 3, 2), date(2025, 2, 22)]
USE_DATES = [date(2025, 3, 10), date(2025, 3, 11), date(2025, 3, 12), date(2025, 3, 13)]


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _earn(db, employee: Actor, workdates=WORKDATES, now=NOW):
    return await CdoLedgerService.create_earn_transaction(
        db,
        actor=employee,
        employee_id=employee.employee_id,
        title="Weekend inventory",
        purpose="Year-end stock count",
        workdates=workdates,
        now=now,
    )


async def _approved(db, employee: Actor, hr: Actor, workdates=WORKDATES, now=NOW) -> uuid.UUID:
    tx = await _earn(db, employee, workdates, now)
    await CdoLedgerService.set_transaction_status(
        db, actor=hr, transaction_id=tx.id, status=ApprovalStatus.approved,
    )
    return tx.id


async def _consume(db, actor: Actor, tx_id: uuid.UUID, dates, reason="Family errand", now=NOW):
    return await CdoLedgerService.create_consume_entries(
        db, actor=actor, transaction_id=tx_id, dates=dates, reason=reason, now=now,
    )


# ═════════════════════════════════════════════════════════════════════
# 1. Earning
# ═════════════════════════════════════════════════════════════════════


async def test_earn_counts_distinct_workdates(db, employee):
    tx = await _earn(db, employee, WORKDATES + [WORKDATES[0]])
    assert tx.earned_credit == 3
    assert tx.used_credit == 0
    assert tx.status == ApprovalStatus.for_approval
    assert tx.created_by == CreatedBy.portal
    assert [w.work_date for w in tx.workdates] == sorted(WORKDATES)


async def test_earn_assigns_daily_sequence_number(db, employee):
    first = await _earn(db, employee)
    second = await _earn(db, employee)
    assert first.cdo_no == "20250303DO-001"
    assert second.cdo_no == "20250303DO-002"


async def test_earn_expires_at_end_of_year(db, employee):
    tx = await _earn(db, employee)
    expiry = tx.expires_at if tx.expires_at.tzinfo else tx.expires_at.replace(tzinfo=TZ)
    assert expiry == expiry_for(NOW)
    assert (expiry.month, expiry.day, expiry.hour, expiry.minute) == (12, 31, 23, 59)


async def test_earn_without_workdates_fails(db, employee):
    with pytest.raises(EmptyWorkdateSetError):
        await _earn(db, employee, [])


async def test_earn_blank_title_fails(db, employee):
    with pytest.raises(ValidationException):
        await CdoLedgerService.create_earn_transaction(
            db, actor=employee, employee_id=employee.employee_id,
            title="   ", purpose=None, workdates=WORKDATES, now=NOW,
        )


async def test_employee_cannot_earn_for_someone_else(db, employee):
    with pytest.raises(ForbiddenException):
        await CdoLedgerService.create_earn_transaction(
            db, actor=employee, employee_id=uuid.uuid4(),
            title="Not mine", purpose=None, workdates=WORKDATES, now=NOW,
        )


async def test_earn_is_audited(db, employee):
    tx = await _earn(db, employee)
    audit = (await db.execute(
        select(AuditTrail).where(AuditTrail.entity_id == tx.id)
    )).scalars().all()
    assert [a.action for a in audit] == ["create"]


async def test_update_pending_transaction(db, employee):
    tx = await _earn(db, employee)
    updated = await CdoLedgerService.update_earn_transaction(
        db, actor=employee, transaction_id=tx.id,
        title="Inventory (corrected)", purpose=None, workdates=WORKDATES[:2],
    )
    assert updated.earned_credit == 2
    assert updated.title == "Inventory (corrected)"


async def test_update_approved_transaction_fails(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    with pytest.raises(ValidationException):
        await CdoLedgerService.update_earn_transaction(
            db, actor=employee, transaction_id=tx_id,
            title="Too late", purpose=None, workdates=WORKDATES,
        )


# ═════════════════════════════════════════════════════════════════════
# 2. Consuming
# ═════════════════════════════════════════════════════════════════════


async def test_consume_more_than_earned_fails_then_exact_succeeds(db, employee, hr_admin):
    """earned 3: four dates are rejected, three dates create three pending entries."""
    tx_id = await _approved(db, employee, hr_admin)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await _consume(db, employee, tx_id, USE_DATES)
    assert exc_info.value.requested == 4
    assert exc_info.value.remaining == 3

    tx = await CdoLedgerService.get_transaction(db, tx_id)
    assert tx.entries == []

    entries = await _consume(db, employee, tx_id, USE_DATES[:3])
    assert len(entries) == 3
    assert all(e.status == ApprovalStatus.for_approval for e in entries)

    tx = await CdoLedgerService.get_transaction(db, tx_id)
    assert tx.used_credit == 0
    assert len(tx.entries) == 3


async def test_consume_from_pending_transaction_fails(db, employee):
    tx = await _earn(db, employee)
    tx_id = tx.id
    with pytest.raises(TransactionNotApprovedError):
        await _consume(db, employee, tx_id, USE_DATES[:1])


async def test_consume_without_reason_fails(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    with pytest.raises(MissingReasonError):
        await _consume(db, employee, tx_id, USE_DATES[:1], reason="  ")


async def test_consume_without_dates_fails(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    with pytest.raises(ValidationException):
        await _consume(db, employee, tx_id, [])


async def test_consume_unknown_transaction_fails(db, employee):
    with pytest.raises(NotFoundException):
        await _consume(db, employee, uuid.uuid4(), USE_DATES[:1])


async def test_consume_after_expiry_fails(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    with pytest.raises(ExpiredError):
        await _consume(db, employee, tx_id, USE_DATES[:1], now=datetime(2026, 1, 1, 0, 0, tzinfo=TZ))


async def test_consume_same_date_twice_conflicts(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    await _consume(db, employee, tx_id, USE_DATES[:1])
    with pytest.raises(ConflictError):
        await _consume(db, employee, tx_id, USE_DATES[:1])


async def test_pending_entries_reserve_credit(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin, workdates=WORKDATES[:2])
    await _consume(db, employee, tx_id, USE_DATES[:1])
    with pytest.raises(InsufficientCreditsError) as exc_info:
        await _consume(db, employee, tx_id, USE_DATES[1:3])
    assert exc_info.value.remaining == 1


async def test_staff_consumes_on_behalf(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    entries = await _consume(db, hr_admin, tx_id, USE_DATES[:1])
    assert entries[0].created_by == CreatedBy.staff
    assert entries[0].employee_id == employee.employee_id


async def test_other_employee_cannot_consume(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    stranger = Actor(employee_id=uuid.uuid4(), role=UserRole.employee)
    with pytest.raises(ForbiddenException):
        await _consume(db, stranger, tx_id, USE_DATES[:1])


# ═════════════════════════════════════════════════════════════════════
# 3. Remaining credits and expiry
# ═════════════════════════════════════════════════════════════════════


async def test_remaining_is_zero_after_expiry(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    before = datetime(2025, 12, 31, 23, 0, tzinfo=TZ)
    after = datetime(2026, 1, 1, 0, 0, tzinfo=TZ)
    assert await CdoLedgerService.remaining_credits(db, tx_id, before) == 3
    assert await CdoLedgerService.remaining_credits(db, tx_id, after) == 0

    tx = await CdoLedgerService.get_transaction(db, tx_id)
    response = CdoLedgerService.to_response(tx, after)
    assert response.is_expired
    assert response.remaining_credits == 0
    assert response.used_credit == 0


# ═════════════════════════════════════════════════════════════════════
# 4. Approval flow
# ═════════════════════════════════════════════════════════════════════


async def test_approving_entries_spends_credit(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin, workdates=WORKDATES[:2])
    entries = await _consume(db, employee, tx_id, USE_DATES[:2])
    entry_ids = [e.id for e in entries]

    for entry_id in entry_ids:
        await CdoLedgerService.set_consume_entry_status(
            db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.approved, now=NOW,
        )

    tx = await CdoLedgerService.get_transaction(db, tx_id)
    assert tx.used_credit == 2
    assert tx.is_consumed
    assert await CdoLedgerService.remaining_credits(db, tx_id, NOW) == 0


async def test_returning_approved_entry_restores_credit(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    entry_id = entry.id
    await CdoLedgerService.set_consume_entry_status(
        db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.approved, now=NOW,
    )
    returned = await CdoLedgerService.set_consume_entry_status(
        db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.returned, now=NOW,
    )
    assert returned.status == ApprovalStatus.returned

    tx = await CdoLedgerService.get_transaction(db, tx_id)
    assert tx.used_credit == 0
    assert not tx.is_consumed


async def test_employee_cannot_review(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    with pytest.raises(ForbiddenException):
        await CdoLedgerService.set_consume_entry_status(
            db, actor=employee, entry_id=entry.id, status=ApprovalStatus.approved,
        )


async def test_terminal_entry_cannot_be_reopened(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    entry_id = entry.id
    await CdoLedgerService.set_consume_entry_status(
        db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.cancelled,
    )
    with pytest.raises(ValidationException):
        await CdoLedgerService.set_consume_entry_status(
            db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.approved,
        )


async def test_transaction_in_use_cannot_be_returned(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    await _consume(db, employee, tx_id, USE_DATES[:1])
    with pytest.raises(ValidationException):
        await CdoLedgerService.set_transaction_status(
            db, actor=hr_admin, transaction_id=tx_id, status=ApprovalStatus.returned,
        )


async def test_same_status_is_a_no_op(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    tx = await CdoLedgerService.set_transaction_status(
        db, actor=hr_admin, transaction_id=tx_id, status=ApprovalStatus.approved,
    )
    assert tx.status == ApprovalStatus.approved


async def test_approved_usage_feeds_the_overlay(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    entries = await _consume(db, employee, tx_id, USE_DATES[:2])
    await CdoLedgerService.set_consume_entry_status(
        db, actor=hr_admin, entry_id=entries[0].id, status=ApprovalStatus.approved, now=NOW,
    )

    usage = await CdoLedgerService.approved_usage(
        db, employee.employee_id, date(2025, 3, 1), date(2025, 3, 31),
    )
    assert [u.date for u in usage] == [USE_DATES[0]]
    assert usage[0].reference == "20250303DO-001"
    assert usage[0].kind == "cdo"


# ═════════════════════════════════════════════════════════════════════
# 5. Edit / cancel
# ═════════════════════════════════════════════════════════════════════


async def test_edit_pending_entry(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    edited = await CdoLedgerService.edit_consume_entry(
        db, actor=employee, entry_id=entry.id, new_date=USE_DATES[3], new_reason="Moved",
    )
    assert edited.use_date == USE_DATES[3]
    assert edited.reason == "Moved"
    tx = await CdoLedgerService.get_transaction(db, tx_id)
    assert tx.used_credit == 0


async def test_edit_onto_taken_date_conflicts(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    first, _second = await _consume(db, employee, tx_id, USE_DATES[:2])
    with pytest.raises(ConflictError):
        await CdoLedgerService.edit_consume_entry(
            db, actor=employee, entry_id=first.id, new_date=USE_DATES[1], new_reason="Clash",
        )


async def test_edit_approved_entry_fails(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    entry_id = entry.id
    await CdoLedgerService.set_consume_entry_status(
        db, actor=hr_admin, entry_id=entry_id, status=ApprovalStatus.approved, now=NOW,
    )
    with pytest.raises(ValidationException):
        await CdoLedgerService.edit_consume_entry(
            db, actor=employee, entry_id=entry_id, new_date=USE_DATES[2], new_reason="Nope",
        )
    with pytest.raises(ValidationException):
        await CdoLedgerService.cancel_consume_entry(db, actor=employee, entry_id=entry_id)


async def test_edit_requires_reason(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    with pytest.raises(MissingReasonError):
        await CdoLedgerService.edit_consume_entry(
            db, actor=employee, entry_id=entry.id, new_date=USE_DATES[1], new_reason="",
        )


async def test_employee_cannot_edit_staff_filed_entry(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin)
    (entry,) = await _consume(db, hr_admin, tx_id, USE_DATES[:1])
    with pytest.raises(ForbiddenException):
        await CdoLedgerService.edit_consume_entry(
            db, actor=employee, entry_id=entry.id, new_date=USE_DATES[1], new_reason="Mine now",
        )


async def test_cancel_frees_the_reservation(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin, workdates=WORKDATES[:1])
    (entry,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    entry_id = entry.id

    cancelled = await CdoLedgerService.cancel_consume_entry(db, actor=employee, entry_id=entry_id)
    assert cancelled.status == ApprovalStatus.cancelled
    again = await CdoLedgerService.cancel_consume_entry(db, actor=employee, entry_id=entry_id)
    assert again.status == ApprovalStatus.cancelled

    # The freed credit, and the freed date, can be used again
    (replacement,) = await _consume(db, employee, tx_id, USE_DATES[:1])
    assert replacement.status == ApprovalStatus.for_approval


async def test_cancel_unknown_entry_fails(db, employee):
    with pytest.raises(NotFoundException):
        await CdoLedgerService.cancel_consume_entry(db, actor=employee, entry_id=uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════
# 6. Serialisation
# ═════════════════════════════════════════════════════════════════════


async def test_concurrent_consumes_never_oversell(db, employee, hr_admin):
    tx_id = await _approved(db, employee, hr_admin, workdates=WORKDATES[:1])

    async def _attempt(use_date: date):
        async with TestSessionFactory() as session:
            return await _consume(session, employee, tx_id, [use_date])

    results = await asyncio.gather(
        _attempt(USE_DATES[0]), _attempt(USE_DATES[1]), return_exceptions=True,
    )
    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], InsufficientCreditsError)

    async with TestSessionFactory() as session:
        tx = await CdoLedgerService.get_transaction(session, tx_id)
        assert len(tx.entries) == 1
        assert tx.used_credit <= tx.earned_credit
    assert len(ledger_locks) == 0


async def test_stale_write_is_retried_once(db):
    calls = []

    async def _flaky():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("version mismatch")
        return "ok"

    result = await _serialized(db, "flaky", _flaky, entity_type="cdo_transaction", entity_id="x")
    assert result == "ok"
    assert len(calls) == 2


async def test_second_stale_write_surfaces(db):
    async def _always_stale():
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrentModificationError):
        await _serialized(db, "stale", _always_stale, entity_type="cdo_transaction", entity_id="x")


async def test_keyed_locks_serialise_per_key():
    locks = KeyedLocks()
    order = []

    async def _worker(name: str, delay: float):
        async with locks.hold("tx"):
            order.append(f"{name}-start")
            await asyncio.sleep(delay)
            order.append(f"{name}-end")

    await asyncio.gather(_worker("a", 0.02), _worker("b", 0))
    assert order == ["a-start", "a-end", "b-start", "b-end"]
    assert len(locks) == 0
