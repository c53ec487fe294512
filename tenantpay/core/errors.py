"""
Error types raised by the services and the handlers that render them.

Every handled error becomes::

    {"error": {"code", "message", "request_id", "details"?}, "detail": message}

Recoverable lifecycle errors (unknown plan or method, missing fields, wrong
code, illegal transition, stale snapshot) are raised before anything is
written, so a 4xx response always means state is unchanged.
"""

import builtins
import logging
from typing import List, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from tenantpay.core.logging import LOGGER_NAME, get_request_id

_logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).code
        self.status_code = status_code or type(self).status_code
        self.request_id = request_id

    def details(self) -> Optional[dict]:
        return None


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UnknownPlan(NotFoundError):
    code = "unknown_plan"

    def __init__(self, plan_id: str):
        super().__init__(f"Unknown plan: {plan_id}")
        self.plan_id = plan_id


class UnknownMethod(NotFoundError):
    code = "unknown_method"

    def __init__(self, method_id: str):
        super().__init__(f"Unknown payment method: {method_id}")
        self.method_id = method_id


class MissingFields(ValidationError):
    """Required payment fields absent or empty."""
    code = "missing_fields"

    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = list(missing)

    def details(self) -> Optional[dict]:
        return {"missing": self.missing}


class InvalidCode(ValidationError):
    """Submitted verification code does not match the current challenge."""
    code = "invalid_code"

    def __init__(self, reason: str = "mismatch"):
        super().__init__(f"Invalid verification code ({reason})")
        self.reason = reason

    def details(self) -> Optional[dict]:
        return {"reason": self.reason}


class InvalidTransition(ConflictError):
    code = "invalid_transition"

    def __init__(self, current_state: str, event: str):
        super().__init__(f"Cannot {event} while in state {current_state}")
        self.current_state = current_state
        self.event = event

    def details(self) -> Optional[dict]:
        return {"current_state": self.current_state, "event": self.event}


class StaleSnapshot(ConflictError):
    """Write rejected because its base snapshot is no longer current."""
    code = "stale_snapshot"

    def __init__(self, key: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"Stale snapshot for {key}: expected version {expected_version}, found {actual_version}"
        )
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class DeliveryFailed(AppError):
    """Owner inbox delivery failed. Logged and swallowed by the dispatcher."""
    code = "delivery_failed"
    status_code = 502


_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed", 422: "validation_error"}


def _resolve_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex


def _error_response(status: int, code: str, message: str, request_id: str, details: Optional[dict] = None) -> JSONResponse:
    """Render the error envelope; ``detail`` mirrors the message for FastAPI-style clients."""
    body = {"code": code, "message": message, "request_id": request_id}
    if details:
        body["details"] = details
    response = JSONResponse(status_code=status, content={"error": body, "detail": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    request_id = exc.request_id or _resolve_request_id(request)
    _logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": request_id, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _error_response(exc.status_code, exc.code, exc.message, request_id, exc.details())


async def http_error_handler(request: Request, exc: HTTPException):
    request_id = _resolve_request_id(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    _logger.warning("http.error", extra={"request_id": request_id, "error_code": code, "status": exc.status_code})
    return _error_response(exc.status_code, code, str(exc.detail or "HTTP error"), request_id)


async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = _resolve_request_id(request)
    _logger.error("unhandled.exception", exc_info=exc, extra={"request_id": request_id, "error_code": "internal_error"})
    return _error_response(500, "internal_error", "Unexpected error", request_id)
