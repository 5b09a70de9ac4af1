"""
Exception hierarchy and the FastAPI handlers that turn it into responses.

Every error response has the same envelope::

    {"error": {"code": "VALIDATION_ERROR", "message": "...", "status": 422,
               "details": {...}}}

Only caller mistakes (``ValidationError``) ever reach an HTTP client from
the pipeline.  ``ExternalServiceError`` and ``ModelCallError`` are raised
by collaborators and absorbed by the assessment service and orchestrator,
which degrade quality fields instead of failing.

Usage:
    from crisiswatch.app.core.errors import ValidationError

    raise ValidationError("population must be >= 1", field="population")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crisiswatch.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class CrisisWatchError(Exception):
    """Base class; subclasses set ``status_code`` and ``error_code``."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


class ValidationError(CrisisWatchError):
    """Caller-supplied input is invalid: unknown region, population < 1, bad plan type."""

    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)


class ExternalServiceError(CrisisWatchError):
    """An upstream data source could not be fetched or returned garbage."""

    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(f"External service '{service}' failed: {message}", service=service, **details)
        self.service = service


class ModelCallError(CrisisWatchError):
    """
    A single generative-AI model call failed.

    ``retryable`` tells the orchestrator whether another attempt against the
    same model is worthwhile (timeouts, 429, 5xx) or whether it should move
    straight to the next model (auth errors, bad requests).
    """

    status_code = 502
    error_code = "MODEL_ERROR"

    def __init__(
        self,
        model: str,
        message: str = "",
        *,
        retryable: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"Model '{model}' call failed: {message}", model=model, upstream_status=status_code)
        self.model = model
        self.retryable = retryable
        self.upstream_status = status_code


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def _respond(request: Request, status: int, body: Dict[str, Any]) -> JSONResponse:
    if not settings.is_production:
        body["error"]["path"] = request.url.path
        body["error"]["method"] = request.method
    return JSONResponse(status_code=status, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Install handlers so every failure uses the error envelope."""

    @app.exception_handler(CrisisWatchError)
    async def handle_crisiswatch_error(request: Request, exc: CrisisWatchError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level, "%s: %s", exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return _respond(request, exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg", "")}
            for e in exc.errors()
        ]
        body = ValidationError("Invalid request", errors=errors).to_dict()
        return _respond(request, 422, body)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled %s on %s", type(exc).__name__, request.url.path, exc_info=exc,
        )
        message = f"{type(exc).__name__}: {exc}" if settings.DEBUG else "Internal server error"
        return _respond(request, 500, CrisisWatchError(message).to_dict())
