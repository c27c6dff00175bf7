"""CDO ledger Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request → request bodies (write)
  - *Response                    → response bodies (read)
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from dtr_portal.common.constants import ApprovalStatus, CreatedBy


# ═════════════════════════════════════════════════════════════════════
# Earn transactions
# ═════════════════════════════════════════════════════════════════════


class CdoTransactionCreate(BaseModel):
    """Payload for earning credits from a set of workdates."""

    title: str = Field(..., min_length=1, max_length=255)
    purpose: Optional[str] = None
    workdates: list[date] = Field(default_factory=list)


class CdoTransactionUpdate(CdoTransactionCreate):
    """Replace the details of a transaction still awaiting approval."""


class StatusUpdateRequest(BaseModel):
    """Staff approval decision for a transaction or consume entry."""

    status: ApprovalStatus


# ═════════════════════════════════════════════════════════════════════
# Consume entries
# ═════════════════════════════════════════════════════════════════════


class ConsumeEntriesCreate(BaseModel):
    """Use one credit per date."""

    dates: list[date] = Field(default_factory=list)
    reason: str = ""


class ConsumeEntryUpdate(BaseModel):
    use_date: date
    reason: str = ""


class CdoConsumeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    employee_id: uuid.UUID
    use_date: date
    reason: str
    status: ApprovalStatus
    created_by: CreatedBy
    created_at: Optional[datetime] = None


class CdoTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    cdo_no: str
    employee_id: uuid.UUID
    title: str
    purpose: Optional[str] = None
    earned_credit: int
    used_credit: int
    is_consumed: bool
    status: ApprovalStatus
    created_by: CreatedBy
    expires_at: datetime
    workdates: list[date]
    entries: list[CdoConsumeEntryResponse]
    remaining_credits: int
    is_expired: bool


class ConsumeEntriesResponse(BaseModel):
    transaction_id: uuid.UUID
    entries: list[CdoConsumeEntryResponse]
    remaining_credits: int


class RemainingCreditsResponse(BaseModel):
    transaction_id: uuid.UUID
    at: datetime
    remaining_credits: int
    is_expired: bool
