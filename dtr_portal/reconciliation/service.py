"""Reconciliation service layer — fetch sources, then run the pure engine.

Business logic:
  - "today" comes from the caller's view state, else the portal clock
  - A half-month on a non-monthly filter is reset to the full window
  - Each source is fetched in its own session, concurrently, with a timeout
  - A failed source is logged, replaced by an empty list and named in the
    report's ``failed_sources``; the report is still produced
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, tzinfo
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dtr_portal.cdo.service import CdoLedgerService
from dtr_portal.common.constants import SubPeriod
from dtr_portal.common.exceptions import InvalidPeriodError, SourceFetchFailedError
from dtr_portal.config import settings
from dtr_portal.reconciliation.aggregator import Report, raw_logs_report, reconcile
from dtr_portal.reconciliation.overlay import CreditPolicy, default_credit_policy
from dtr_portal.reconciliation.schemas import (
    RawLogsReport,
    ReconciliationSnapshot,
    ViewState,
)
from dtr_portal.reconciliation.windows import resolve_window
from dtr_portal.timekeeping.service import TimekeepingSources

logger = logging.getLogger(__name__)

Fetcher = Callable[[AsyncSession], Awaitable[list[Any]]]

EXCEPTION_SOURCES = ("holidays", "locators", "fixlogs", "leaves", "travels", "cdo")


def default_fetchers(
    employee_id: uuid.UUID,
    start: date,
    end: date,
    tz: tzinfo,
) -> dict[str, Fetcher]:
    """Source name → coroutine factory taking a fresh session."""
    return {
        "punches": lambda db: TimekeepingSources.fetch_punches(db, employee_id, start, end, tz),
        "shifts": lambda db: TimekeepingSources.fetch_shifts(db, employee_id, start, end),
        "holidays": lambda db: TimekeepingSources.fetch_holidays(db, start, end),
        "locators": lambda db: TimekeepingSources.fetch_locators(db, employee_id, start, end),
        "fixlogs": lambda db: TimekeepingSources.fetch_fixlogs(db, employee_id, start, end),
        "leaves": lambda db: TimekeepingSources.fetch_leaves(db, employee_id, start, end),
        "travels": lambda db: TimekeepingSources.fetch_travels(db, employee_id, start, end),
        "cdo": lambda db: CdoLedgerService.approved_usage(db, employee_id, start, end),
    }


class ReconciliationService:
    """Builds DTR reports for one employee and window."""

    # ── Clock / window ──────────────────────────────────────────────

    @staticmethod
    def today(view_state: ViewState, tz: Optional[tzinfo] = None) -> date:
        tz = tz or settings.tz
        now = view_state.now or datetime.now(tz)
        if now.tzinfo is None:
            return now.date()
        return now.astimezone(tz).date()

    @staticmethod
    def resolve_dates(view_state: ViewState, today: date) -> tuple[list[date], SubPeriod]:
        """Window dates for the view state, falling back to the full window."""
        try:
            return resolve_window(view_state.filter, view_state.period, today), view_state.period
        except InvalidPeriodError as exc:
            logger.warning("%s Showing the full window instead.", exc.detail)
            return resolve_window(view_state.filter, SubPeriod.full, today), SubPeriod.full

    # ── Source loading ──────────────────────────────────────────────

    @staticmethod
    async def load_snapshot(
        session_factory: async_sessionmaker[AsyncSession],
        employee_id: uuid.UUID,
        dates: list[date],
        *,
        tz: Optional[tzinfo] = None,
        fetchers: Optional[dict[str, Fetcher]] = None,
    ) -> ReconciliationSnapshot:
        """Fetch every source concurrently; failures degrade to empty lists."""
        tz = tz or settings.tz
        if fetchers is None:
            fetchers = default_fetchers(employee_id, dates[0], dates[-1], tz)
        gate = asyncio.Semaphore(max(settings.SOURCE_FETCH_CONCURRENCY, 1))

        async def _run(fetch: Fetcher) -> list[Any]:
            async with gate:
                async with session_factory() as db:
                    return await asyncio.wait_for(
                        fetch(db), settings.SOURCE_FETCH_TIMEOUT_SECONDS
                    )

        names = list(fetchers)
        results = await asyncio.gather(
            *(_run(fetchers[name]) for name in names),
            return_exceptions=True,
        )

        loaded: dict[str, list[Any]] = {}
        failed: list[str] = []
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                reason = str(result) or type(result).__name__
                error = SourceFetchFailedError(name, reason)
                logger.warning("%s (employee %s)", error.detail, employee_id)
                failed.append(name)
                loaded[name] = []
            elif isinstance(result, BaseException):
                raise result
            else:
                loaded[name] = result

        exceptions: list[Any] = []
        for name in EXCEPTION_SOURCES:
            exceptions.extend(loaded.get(name, []))

        return ReconciliationSnapshot(
            employee_id=employee_id,
            dates=tuple(dates),
            punches=tuple(loaded.get("punches", [])),
            shifts=tuple(loaded.get("shifts", [])),
            exceptions=tuple(exceptions),
            failed_sources=tuple(failed),
        )

    # ── Reports ─────────────────────────────────────────────────────

    @staticmethod
    async def build_report(
        session_factory: async_sessionmaker[AsyncSession],
        employee_id: uuid.UUID,
        view_state: ViewState,
        *,
        credit_policy: CreditPolicy = default_credit_policy,
        fetchers: Optional[dict[str, Fetcher]] = None,
    ) -> Report:
        """Annotated or basic DTR for the selected window."""
        tz = settings.tz
        today = ReconciliationService.today(view_state, tz)
        dates, period = ReconciliationService.resolve_dates(view_state, today)
        snapshot = await ReconciliationService.load_snapshot(
            session_factory, employee_id, dates, tz=tz, fetchers=fetchers,
        )
        return reconcile(
            snapshot,
            view_state,
            today=today,
            tz=tz,
            period=period,
            credit_policy=credit_policy,
        )

    @staticmethod
    async def build_raw_logs(
        session_factory: async_sessionmaker[AsyncSession],
        employee_id: uuid.UUID,
        view_state: ViewState,
    ) -> RawLogsReport:
        """Unbound AM/PM punch lists per day.

        Only punches and shifts are read; shifts feed the header schedule.
        """
        tz = settings.tz
        today = ReconciliationService.today(view_state, tz)
        dates, period = ReconciliationService.resolve_dates(view_state, today)
        fetchers = default_fetchers(employee_id, dates[0], dates[-1], tz)
        snapshot = await ReconciliationService.load_snapshot(
            session_factory,
            employee_id,
            dates,
            tz=tz,
            fetchers={name: fetchers[name] for name in ("punches", "shifts")},
        )
        return raw_logs_report(snapshot, view_state, tz=tz, period=period)
