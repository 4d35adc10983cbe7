"""
Custom exceptions and error handlers.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.utils.logging import get_request_id

logger = logging.getLogger(__name__)


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class NotFoundError(AppException):
    """Resource not found. The UI sends the user back to the document list."""

    def __init__(self, resource: str, resource_id: str, redirect_to: str = "/"):
        super().__init__(
            status_code=404,
            code="NOT_FOUND",
            message=f"{resource} not found: {resource_id}",
            details={"redirect_to": redirect_to},
        )


class ValidationException(AppException):
    """Validation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=400,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class UploadException(AppException):
    """Object storage rejected the write."""

    _STATUS_BY_REASON = {
        "size_limit": 413,
        "permission": 403,
    }

    def __init__(self, message: str, reason: str = "other"):
        super().__init__(
            status_code=self._STATUS_BY_REASON.get(reason, 502),
            code="UPLOAD_FAILED",
            message=message,
            details={"reason": reason},
        )


class VerificationException(AppException):
    """Uploaded file is not reachable at its public URL."""

    def __init__(self, message: str):
        super().__init__(
            status_code=502,
            code="VERIFICATION_FAILED",
            message=message,
        )


class PersistenceException(AppException):
    """Database write failed."""

    def __init__(self, message: str):
        super().__init__(
            status_code=502,
            code="PERSISTENCE_FAILED",
            message=message,
        )


class AlreadySignedException(AppException):
    """Document is already signed."""

    def __init__(self, document_id: str):
        super().__init__(
            status_code=409,
            code="ALREADY_SIGNED",
            message=f"Document {document_id} has already been signed",
        )


class CompositingException(AppException):
    """The signature image itself could not be placed on the page."""

    def __init__(self, message: str):
        super().__init__(
            status_code=422,
            code="SIGNATURE_IMAGE_INVALID",
            message=message,
        )


class SigningException(AppException):
    """Signing operation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=422,
            code="SIGNING_ERROR",
            message=message,
            details=details,
        )


class RenderSupersededException(AppException):
    """A newer page render replaced this one before it finished."""

    def __init__(self, message: str):
        super().__init__(
            status_code=409,
            code="RENDER_SUPERSEDED",
            message=message,
        )


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(f"AppException: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            exc.status_code,
            exc.code,
            exc.message,
            exc.details,
        ),
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
    )


async def validation_exception_handler(
    request: Request,
    exc: ValidationError,
) -> JSONResponse:
    """Handle Pydantic / request validation errors."""
    logger.warning(f"ValidationError: {exc.errors()}")

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    return JSONResponse(
        status_code=500,
        content=build_error_response(
            500,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        ),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
