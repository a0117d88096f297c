"""
Error Handling Module for HERA Finance Engine

This module provides centralized error handling with:
- Custom exception hierarchy for posting failures
- Rejection kinds (configuration, data, policy, module inactive)
- Standardized error responses
- Infrastructure (retryable) error handling
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("finance_engine.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NOT_FOUND = "NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Configuration Errors
    UNKNOWN_SMART_CODE = "UNKNOWN_SMART_CODE"
    MODULE_NOT_CONFIGURED = "MODULE_NOT_CONFIGURED"
    INVALID_POSTING_RULE = "INVALID_POSTING_RULE"
    INVALID_EXPRESSION = "INVALID_EXPRESSION"
    TENANT_MISMATCH = "TENANT_MISMATCH"

    # Data Errors
    DERIVATION_FAILED = "DERIVATION_FAILED"
    UNBALANCED_LINES = "UNBALANCED_LINES"
    CURRENCY_NOT_SUPPORTED = "CURRENCY_NOT_SUPPORTED"

    # Policy / Period Errors
    MODULE_INACTIVE = "MODULE_INACTIVE"
    FISCAL_PERIOD_CLOSED = "FISCAL_PERIOD_CLOSED"
    ACTION_NOT_PERMITTED = "ACTION_NOT_PERMITTED"
    AMOUNT_LIMIT_EXCEEDED = "AMOUNT_LIMIT_EXCEEDED"
    POSTING_REJECTED = "POSTING_REJECTED"

    # Infrastructure Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class RejectionKind(str, Enum):
    """Why a business event was rejected"""
    CONFIGURATION = "configuration"
    DATA = "data"
    POLICY = "policy"
    MODULE_INACTIVE = "module_inactive"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Finance (Business) Exceptions
# ============================================================================

class FinanceException(AppException):
    """
    A business event could not be posted.

    Always terminal for the event; the posting engine turns these into
    Rejected outcomes instead of letting them reach the caller.
    """

    def __init__(
        self,
        message: str,
        kind: RejectionKind = RejectionKind.DATA,
        code: ErrorCode = ErrorCode.POSTING_REJECTED,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.kind = kind
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class DerivationError(FinanceException):
    """An account path could not be resolved against master data"""

    def __init__(self, path: str, entity_id: Optional[str] = None, message: Optional[str] = None):
        self.path = path
        self.entity_id = entity_id
        details = {"path": path}
        if entity_id:
            details["entity_id"] = entity_id
        super().__init__(
            message=message or f"cannot derive account from path {path}",
            kind=RejectionKind.DATA,
            code=ErrorCode.DERIVATION_FAILED,
            details=details,
        )


class UnknownSmartCodeError(FinanceException):
    """No posting rule exists for the smart code"""

    def __init__(self, smart_code: str):
        self.smart_code = smart_code
        super().__init__(
            message=f"unknown smart code: {smart_code}",
            kind=RejectionKind.CONFIGURATION,
            code=ErrorCode.UNKNOWN_SMART_CODE,
            details={"smart_code": smart_code},
        )


class BalanceError(FinanceException):
    """Debits and credits differ by more than the tolerance"""

    def __init__(self, total_debit: Decimal, total_credit: Decimal, stage: str = "input"):
        self.difference = abs(total_debit - total_credit)
        super().__init__(
            message=(
                f"lines do not balance: debits {total_debit} != credits {total_credit} "
                f"(difference {self.difference})"
            ),
            kind=RejectionKind.DATA,
            code=ErrorCode.UNBALANCED_LINES,
            details={
                "stage": stage,
                "total_debit": str(total_debit),
                "total_credit": str(total_credit),
                "difference": str(self.difference),
            },
        )


class PostingRuleError(AppException):
    """A posting rule definition is invalid (raised while building the registry)"""

    def __init__(self, message: str, smart_code: Optional[str] = None, code: ErrorCode = ErrorCode.INVALID_POSTING_RULE):
        details = {"smart_code": smart_code} if smart_code else None
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class ExpressionError(PostingRuleError):
    """An outcome expression cannot be parsed"""

    def __init__(self, message: str, expression: Optional[str] = None):
        self.expression = expression
        super().__init__(message=message, code=ErrorCode.INVALID_EXPRESSION)
        if expression is not None:
            self.details["expression"] = expression


class JournalAlreadyCommittedError(AppException):
    """A journal already exists under the idempotency key, so the event cannot be staged"""

    def __init__(self, idempotency_key: str, journal_code: str):
        self.idempotency_key = idempotency_key
        self.journal_code = journal_code
        super().__init__(
            code=ErrorCode.DUPLICATE_ENTRY,
            message=f"journal {journal_code} already committed under {idempotency_key}",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key, "journal_code": journal_code},
        )


# ============================================================================
# Infrastructure Exceptions
# ============================================================================

class FinanceInfrastructureError(AppException):
    """
    Retryable I/O failure talking to the fiscal service, master data or
    the ledger store. Never converted into a business rejection.
    """

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        original_error: Optional[Exception] = None,
    ):
        self.service_name = service_name
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"service": service_name},
            original_error=original_error,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    logger.error(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "AppException",
    "ErrorCode",
    "RejectionKind",
    "FinanceException",
    "DerivationError",
    "UnknownSmartCodeError",
    "BalanceError",
    "PostingRuleError",
    "ExpressionError",
    "JournalAlreadyCommittedError",
    "FinanceInfrastructureError",
    "setup_exception_handlers",
    "create_error_response",
]
