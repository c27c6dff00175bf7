"""DTR router — annotated / basic daily time records and raw punch logs.

All endpoints require authentication. ``/me`` endpoints report on the
caller; ``/employees/{id}`` enforces the hr_admin role.
"""

import uuid
from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dtr_portal.auth.dependencies import Actor, get_current_actor, require_staff
from dtr_portal.common.constants import CoarseFilter, ReportView, SubPeriod
from dtr_portal.database import get_session_factory
from dtr_portal.reconciliation.schemas import (
    AnnotatedReport,
    AnnotationToggles,
    BasicReport,
    RawLogsReport,
    ViewState,
)
from dtr_portal.reconciliation.service import ReconciliationService

router = APIRouter(prefix="", tags=["dtr"])


def view_state_params(
    filter: CoarseFilter = Query(CoarseFilter.this_month, description="Coarse date filter"),
    period: SubPeriod = Query(SubPeriod.full, description="Month half; monthly filters only"),
    view: ReportView = Query(ReportView.annotated),
    locator: bool = Query(True),
    fixlog: bool = Query(True),
    leave: bool = Query(True),
    travel: bool = Query(True),
    cdo: bool = Query(True),
    holiday: bool = Query(True),
    weekend: bool = Query(True),
    absent: bool = Query(True),
    include_weekend_remark: bool = Query(False),
    now: Optional[datetime] = Query(None, description="Evaluate as of this instant"),
) -> ViewState:
    """Collect the report selection from query parameters."""
    return ViewState(
        filter=filter,
        period=period,
        view=view,
        toggles=AnnotationToggles(
            locator=locator,
            fixlog=fixlog,
            leave=leave,
            travel=travel,
            cdo=cdo,
            holiday=holiday,
            weekend=weekend,
            absent=absent,
        ),
        include_weekend_remark=include_weekend_remark,
        now=now,
    )


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=Union[AnnotatedReport, BasicReport])
async def my_dtr(
    view_state: ViewState = Depends(view_state_params),
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """The caller's daily time record for the selected window."""
    return await ReconciliationService.build_report(
        session_factory, actor.employee_id, view_state,
    )


# ── GET /me/raw-logs ────────────────────────────────────────────────

@router.get("/me/raw-logs", response_model=RawLogsReport)
async def my_raw_logs(
    view_state: ViewState = Depends(view_state_params),
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """The caller's punches grouped by day and half-day, without slot binding."""
    return await ReconciliationService.build_raw_logs(
        session_factory, actor.employee_id, view_state,
    )


# ── Staff: GET /employees/{id} ──────────────────────────────────────

@router.get("/employees/{employee_id}", response_model=Union[AnnotatedReport, BasicReport])
async def employee_dtr(
    employee_id: uuid.UUID,
    view_state: ViewState = Depends(view_state_params),
    actor: Actor = Depends(require_staff),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Any employee's daily time record (HR)."""
    return await ReconciliationService.build_report(
        session_factory, employee_id, view_state,
    )
