from __future__ import annotations

import traceback
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskgate.api.denial import is_access_denial, render_denial
from taskgate.api.schemas import error_envelope
from taskgate.config import Settings
from taskgate.logging import get_logger
from taskgate.service.avatars import PathTraversalError
from taskgate.service.errors import ServiceError
from taskgate.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_MESSAGE = {
    400: "Bad request",
    401: "Not authorized to access this route",
    403: "Forbidden",
    404: "Resource not found",
    405: "Method not allowed",
    409: "Duplicate field value entered",
    500: "Server Error",
}


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _error_response(
    status_code: int,
    message: str,
    *,
    details: Any = None,
    stack: Optional[str] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(message, details=details, stack=stack),
    )


def _validation_details(exc: RequestValidationError) -> List[dict]:
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        if error.get("type") == "extra_forbidden":
            message = f"Unexpected field: {field}"
        elif error.get("type") == "json_invalid":
            message = "Invalid JSON payload"
        elif error.get("type") == "missing":
            message = f"{field} is required"
        else:
            message = str(error.get("msg", "Invalid value"))
            # pydantic prefixes ValueError messages raised by validators
            message = message.removeprefix("Value error, ")
        details.append({"field": field, "message": message})
    return details


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Install handlers that render every failure as the error envelope.

    Tracebacks are attached to 5xx responses outside production only.
    """

    def _stack_for(exc: BaseException, status_code: int) -> Optional[str]:
        if settings.is_production or status_code < 500:
            return None
        return _format_stack(exc)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, _STATUS_TO_MESSAGE[409], details=exc.detail or None)

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        stack = _stack_for(exc, exc.status_code)
        if is_access_denial(exc):
            return render_denial(request, exc, settings, stack=stack)
        return _error_response(
            exc.status_code, exc.message, details=exc.detail or None, stack=stack
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        message = ", ".join(d["message"] for d in details) or "Validation failed"
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            fields=[d["field"] for d in details],
        )
        return _error_response(400, message, details=details)

    @app.exception_handler(PathTraversalError)
    async def handle_path_traversal_error(request: Request, exc: PathTraversalError):
        logger.warning(
            "path_traversal_attempt",
            path=request.url.path,
            method=request.method,
            client_ip=request.client.host if request.client else None,
        )
        return _error_response(400, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, str) and exc.detail:
            message = exc.detail
        else:
            message = _STATUS_TO_MESSAGE.get(exc.status_code, "Request failed")
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message, stack=_stack_for(exc, exc.status_code))

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, _STATUS_TO_MESSAGE[500], stack=_stack_for(exc, 500))
