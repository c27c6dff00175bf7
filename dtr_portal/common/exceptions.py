"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://dtr.portal/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="entity-not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


# The ledger's name for the same failure
EntityNotFoundError = NotFoundException


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Reconciliation errors ───────────────────────────────────────────

class InvalidPeriodError(AppException):
    """422 — sub-period requested for a filter without month halves."""

    def __init__(self, coarse_filter: str, period: str) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-period",
            title="Invalid Period",
            detail=(
                f"Sub-period '{period}' is only supported for monthly filters, "
                f"not '{coarse_filter}'."
            ),
            errors={"period": [f"'{period}' is not valid for '{coarse_filter}'."]},
        )


class SourceFetchFailedError(AppException):
    """502 — one reconciliation source could not be loaded.

    Never reaches the client from the report endpoints: the aggregator
    logs it and substitutes an empty collection.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(
            status_code=502,
            error_type="source-fetch-failed",
            title="Source Fetch Failed",
            detail=f"Source '{source}' could not be fetched: {reason}",
        )


# ── CDO ledger errors ───────────────────────────────────────────────

class EmptyWorkdateSetError(AppException):
    """422 — an earn transaction needs at least one workdate."""

    def __init__(self) -> None:
        super().__init__(
            status_code=422,
            error_type="empty-workdate-set",
            title="Empty Workdate Set",
            detail="At least one workdate is required to earn CDO credits.",
            errors={"workdates": ["At least one workdate is required."]},
        )


class TransactionNotApprovedError(AppException):
    """409 — credits can only be used from an approved transaction."""

    def __init__(self, transaction_id: Any, status: str) -> None:
        super().__init__(
            status_code=409,
            error_type="transaction-not-approved",
            title="Transaction Not Approved",
            detail=(
                f"CDO transaction '{transaction_id}' is '{status}'; "
                "only approved transactions can be consumed."
            ),
        )


class ExpiredError(AppException):
    """409 — the transaction's credits are past their expiry date."""

    def __init__(self, transaction_id: Any, expiry: datetime) -> None:
        super().__init__(
            status_code=409,
            error_type="expired",
            title="Credits Expired",
            detail=(
                f"CDO transaction '{transaction_id}' expired on "
                f"{expiry.date().isoformat()}."
            ),
        )


class InsufficientCreditsError(AppException):
    """409 — request exceeds the remaining credit balance."""

    def __init__(self, requested: int, remaining: int) -> None:
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            status_code=409,
            error_type="insufficient-credits",
            title="Insufficient Credits",
            detail=(
                f"Requested {requested} day(s) but only {remaining} "
                "credit(s) remain."
            ),
        )


class MissingReasonError(AppException):
    """422 — consume entries must state a reason."""

    def __init__(self) -> None:
        super().__init__(
            status_code=422,
            error_type="missing-reason",
            title="Missing Reason",
            detail="A reason is required to use CDO credits.",
            errors={"reason": ["Reason must not be blank."]},
        )


class ConcurrentModificationError(AppException):
    """409 — the row changed under us and the retry also lost the race."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-modification",
            title="Concurrent Modification",
            detail=(
                f"{entity_type} '{entity_id}' was modified concurrently; "
                "please retry."
            ),
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
