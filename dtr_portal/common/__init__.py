"""Common module — shared utilities for the DTR portal."""

from dtr_portal.common.audit import AuditTrail, create_audit_entry
from dtr_portal.common.constants import (
    DAY_SLOTS,
    EMPTY_CELL,
    AnnotationKind,
    ApprovalStatus,
    CoarseFilter,
    CreatedBy,
    DaySlot,
    RemarkType,
    ReportView,
    ShiftMode,
    SubPeriod,
    UserRole,
    normalize_status,
)
from dtr_portal.common.exceptions import (
    AppException,
    ConcurrentModificationError,
    ConflictError,
    EmptyWorkdateSetError,
    EntityNotFoundError,
    ExpiredError,
    ForbiddenException,
    InsufficientCreditsError,
    InvalidPeriodError,
    MissingReasonError,
    NotFoundException,
    SourceFetchFailedError,
    TransactionNotApprovedError,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AnnotationKind",
    "ApprovalStatus",
    "CoarseFilter",
    "CreatedBy",
    "DaySlot",
    "RemarkType",
    "ReportView",
    "ShiftMode",
    "SubPeriod",
    "UserRole",
    "DAY_SLOTS",
    "EMPTY_CELL",
    "normalize_status",
    # Exceptions
    "AppException",
    "ConcurrentModificationError",
    "ConflictError",
    "EmptyWorkdateSetError",
    "EntityNotFoundError",
    "ExpiredError",
    "ForbiddenException",
    "InsufficientCreditsError",
    "InvalidPeriodError",
    "MissingReasonError",
    "NotFoundException",
    "SourceFetchFailedError",
    "TransactionNotApprovedError",
    "ValidationException",
    "register_exception_handlers",
]
