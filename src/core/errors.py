from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class AppError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code="bad_request", message=message, status_code=400, details=details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(code="unauthorized", message=message, status_code=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(code="forbidden", message=message, status_code=403)


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(code="not_found", message=message, status_code=404)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code="conflict", message=message, status_code=409, details=details)


class InvalidStateTransitionError(AppError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            code="invalid_state_transition",
            message=f"Cannot move {entity} from {current} to {target}",
            status_code=409,
            details={"entity": entity, "from": current, "to": target},
        )
        self.entity = entity
        self.current = current
        self.target = target


class AgentInactiveError(AppError):
    def __init__(self, status: str) -> None:
        super().__init__(
            code="agent_inactive",
            message="Travel agent account is not active",
            status_code=403,
            details={"status": status},
        )


class LimitExceededError(AppError):
    def __init__(self, which: str, limit: Any, requested: Any) -> None:
        super().__init__(
            code="limit_exceeded",
            message=f"Booking limit exceeded: {which}",
            status_code=422,
            details={"which": which, "limit": limit, "requested": requested},
        )
        self.which = which


class InvalidStayError(AppError):
    def __init__(self, message: str = "Invalid stay window") -> None:
        super().__init__(code="invalid_stay", message=message, status_code=400)


class PricingInconsistentError(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code="pricing_inconsistent", message=message, status_code=422, details=details)


class NoApplicableRateError(AppError):
    def __init__(self, room_type_id: str) -> None:
        super().__init__(
            code="no_applicable_rate",
            message="No special rate applies to the requested stay",
            status_code=422,
            details={"roomTypeId": room_type_id},
        )


class DuplicateIdempotencyKeyError(AppError):
    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            code="duplicate_idempotency_key",
            message="Idempotency key was already used with a different payload",
            status_code=409,
            details={"idempotencyKey": idempotency_key},
        )


class RequestTimeoutError(AppError):
    def __init__(self, message: str = "Request deadline exceeded") -> None:
        super().__init__(code="timeout", message=message, status_code=504)


class AnalyticsUnavailableError(AppError):
    def __init__(self, message: str = "Analytics are temporarily unavailable") -> None:
        super().__init__(code="analytics_unavailable", message=message, status_code=503)


class InternalError(AppError):
    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(code="internal_error", message=message, status_code=500)


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    envelope = ErrorEnvelope(error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details))
    return JSONResponse(status_code=exc.status_code, content=envelope.model_dump(mode="json"))


def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorDetail(
            code="validation_error",
            message="Validation error",
            details={"errors": jsonable_encoder(exc.errors())},
        )
    )
    return JSONResponse(status_code=422, content=envelope.model_dump(mode="json"))


def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    internal = InternalError()
    envelope = ErrorEnvelope(error=ErrorDetail(code=internal.code, message=internal.message))
    return JSONResponse(status_code=internal.status_code, content=envelope.model_dump(mode="json"))
