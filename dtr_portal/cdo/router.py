"""CDO ledger router — self-service credits and staff review.

All endpoints require authentication. ``/me`` endpoints act for the caller;
the staff endpoints enforce the hr_admin role.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dtr_portal.auth.dependencies import Actor, get_current_actor, require_staff
from dtr_portal.cdo.schemas import (
    CdoConsumeEntryResponse,
    CdoTransactionCreate,
    CdoTransactionResponse,
    CdoTransactionUpdate,
    ConsumeEntriesCreate,
    ConsumeEntriesResponse,
    ConsumeEntryUpdate,
    RemainingCreditsResponse,
    StatusUpdateRequest,
)
from dtr_portal.cdo.service import CdoLedgerService, is_expired, remaining_of
from dtr_portal.common.exceptions import ForbiddenException
from dtr_portal.common.rate_limit import LEDGER_WRITE_LIMIT, limiter
from dtr_portal.config import settings
from dtr_portal.database import get_db

router = APIRouter(prefix="", tags=["cdo"])


async def _consume(
    db: AsyncSession,
    actor: Actor,
    transaction_id: uuid.UUID,
    body: ConsumeEntriesCreate,
) -> ConsumeEntriesResponse:
    entries = await CdoLedgerService.create_consume_entries(
        db,
        actor=actor,
        transaction_id=transaction_id,
        dates=body.dates,
        reason=body.reason,
    )
    tx = await CdoLedgerService.get_transaction(db, transaction_id)
    return ConsumeEntriesResponse(
        transaction_id=transaction_id,
        entries=[CdoConsumeEntryResponse.model_validate(e) for e in entries],
        remaining_credits=remaining_of(tx),
    )


# ── GET /me/transactions ────────────────────────────────────────────

@router.get("/me/transactions", response_model=list[CdoTransactionResponse])
async def my_transactions(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """The caller's CDO transactions with remaining credits."""
    txs = await CdoLedgerService.list_transactions(db, actor.employee_id)
    return [CdoLedgerService.to_response(tx) for tx in txs]


# ── POST /me/transactions ───────────────────────────────────────────

@router.post("/me/transactions", response_model=CdoTransactionResponse, status_code=201)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def create_transaction(
    request: Request,
    body: CdoTransactionCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """File workdates that earn CDO credits."""
    tx = await CdoLedgerService.create_earn_transaction(
        db,
        actor=actor,
        employee_id=actor.employee_id,
        title=body.title,
        purpose=body.purpose,
        workdates=body.workdates,
    )
    return CdoLedgerService.to_response(tx)


# ── PUT /me/transactions/{id} ───────────────────────────────────────

@router.put("/me/transactions/{transaction_id}", response_model=CdoTransactionResponse)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def update_transaction(
    request: Request,
    transaction_id: uuid.UUID,
    body: CdoTransactionUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Edit a transaction that is still awaiting approval."""
    tx = await CdoLedgerService.update_earn_transaction(
        db,
        actor=actor,
        transaction_id=transaction_id,
        title=body.title,
        purpose=body.purpose,
        workdates=body.workdates,
    )
    return CdoLedgerService.to_response(tx)


# ── POST /me/transactions/{id}/entries ──────────────────────────────

@router.post(
    "/me/transactions/{transaction_id}/entries",
    response_model=ConsumeEntriesResponse,
    status_code=201,
)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def consume_credits(
    request: Request,
    transaction_id: uuid.UUID,
    body: ConsumeEntriesCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Use credits on one or more dates."""
    return await _consume(db, actor, transaction_id, body)


# ── PUT /me/entries/{id} ────────────────────────────────────────────

@router.put("/me/entries/{entry_id}", response_model=CdoConsumeEntryResponse)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def edit_entry(
    request: Request,
    entry_id: uuid.UUID,
    body: ConsumeEntryUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Move or reword a pending use-date."""
    entry = await CdoLedgerService.edit_consume_entry(
        db,
        actor=actor,
        entry_id=entry_id,
        new_date=body.use_date,
        new_reason=body.reason,
    )
    return CdoConsumeEntryResponse.model_validate(entry)


# ── POST /me/entries/{id}/cancel ────────────────────────────────────

@router.post("/me/entries/{entry_id}/cancel", response_model=CdoConsumeEntryResponse)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def cancel_entry(
    request: Request,
    entry_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a pending use-date."""
    entry = await CdoLedgerService.cancel_consume_entry(db, actor=actor, entry_id=entry_id)
    return CdoConsumeEntryResponse.model_validate(entry)


# ── GET /transactions/{id}/remaining ────────────────────────────────

@router.get("/transactions/{transaction_id}/remaining", response_model=RemainingCreditsResponse)
async def remaining_credits(
    transaction_id: uuid.UUID,
    at: Optional[datetime] = Query(None, description="Evaluate as of this instant"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Remaining credits of one transaction, forced to 0 after expiry."""
    tx = await CdoLedgerService.get_transaction(db, transaction_id)
    if not actor.is_staff and tx.employee_id != actor.employee_id:
        raise ForbiddenException("You can only view your own CDO credits.")
    return RemainingCreditsResponse(
        transaction_id=tx.id,
        at=at or datetime.now(settings.tz),
        remaining_credits=remaining_of(tx, at),
        is_expired=is_expired(tx, at),
    )


# ── Staff: GET /employees/{id}/transactions ─────────────────────────

@router.get("/employees/{employee_id}/transactions", response_model=list[CdoTransactionResponse])
async def employee_transactions(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Ledger view of any employee (HR)."""
    txs = await CdoLedgerService.list_transactions(db, employee_id)
    return [CdoLedgerService.to_response(tx) for tx in txs]


# ── Staff: POST /employees/{id}/transactions/{tx}/entries ───────────

@router.post(
    "/employees/{employee_id}/transactions/{transaction_id}/entries",
    response_model=ConsumeEntriesResponse,
    status_code=201,
)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def staff_consume_credits(
    request: Request,
    employee_id: uuid.UUID,
    transaction_id: uuid.UUID,
    body: ConsumeEntriesCreate,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """File use-dates on an employee's behalf (HR)."""
    tx = await CdoLedgerService.get_transaction(db, transaction_id)
    if tx.employee_id != employee_id:
        raise ForbiddenException("Transaction does not belong to this employee.")
    return await _consume(db, actor, transaction_id, body)


# ── Staff: PUT /transactions/{id}/status ────────────────────────────

@router.put("/transactions/{transaction_id}/status", response_model=CdoTransactionResponse)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def review_transaction(
    request: Request,
    transaction_id: uuid.UUID,
    body: StatusUpdateRequest,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Approve, return or cancel an earn transaction (HR)."""
    tx = await CdoLedgerService.set_transaction_status(
        db, actor=actor, transaction_id=transaction_id, status=body.status,
    )
    return CdoLedgerService.to_response(tx)


# ── Staff: PUT /entries/{id}/status ─────────────────────────────────

@router.put("/entries/{entry_id}/status", response_model=CdoConsumeEntryResponse)
@limiter.limit(LEDGER_WRITE_LIMIT)
async def review_entry(
    request: Request,
    entry_id: uuid.UUID,
    body: StatusUpdateRequest,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Approve, return or cancel a use-date (HR)."""
    entry = await CdoLedgerService.set_consume_entry_status(
        db, actor=actor, entry_id=entry_id, status=body.status,
    )
    return CdoConsumeEntryResponse.model_validate(entry)
