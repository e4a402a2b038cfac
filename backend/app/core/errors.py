"""
Error model for the epidemic core, plus the FastAPI handlers that render it.

Each error class fixes its own HTTP status and machine-readable code, so
raising sites only supply what went wrong:

    raise NotFoundError("Zone", id="Z-001")
    raise ValidationError("Grid size must be positive", field="cell_size_deg")

Rendered body:

    {"error": {"code": "NOT_FOUND", "message": "Zone not found", "status": 404,
               "details": {"resource": "Zone", "id": "Z-001"}}}

PushChannelError is raised by push channels only.  The alert dispatcher turns
it into a classified delivery result, so it never reaches a client.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class EpidemicCoreError(Exception):
    """Base for every error raised by the core."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(EpidemicCoreError):
    """A case, zone or other record does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


class ValidationError(EpidemicCoreError):
    """Bad input or an illegal state change."""

    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)


class ExternalServiceError(EpidemicCoreError):
    """An upstream HTTP dependency (e.g. Nominatim) failed."""

    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(f"{service} request failed: {message}", service=service, **details)
        self.service = service


class PushChannelError(EpidemicCoreError):
    """
    A push provider rejected or could not take a send.

    ``code`` is one of the PushErrorKind values (``invalid_token``,
    ``transient``, ``channel_unavailable``); anything else is read as
    transient by the dispatcher.
    """

    status_code = 502
    error_code = "PUSH_CHANNEL_ERROR"

    def __init__(self, message: str = "", *, code: str = "transient"):
        super().__init__(message or code, provider_code=code)
        self.code = code


def _error_response(status_code: int, error: Dict[str, Any], request: Request) -> JSONResponse:
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return JSONResponse(status_code=status_code, content={"error": error})


def register_error_handlers(app: FastAPI) -> None:
    """Render EpidemicCoreError subclasses and stray exceptions as JSON."""

    @app.exception_handler(EpidemicCoreError)
    async def handle_core_error(request: Request, exc: EpidemicCoreError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s on %s: %s", exc.error_code, request.url.path, exc.message,
                   extra={"details": exc.details})
        return _error_response(exc.status_code, exc.to_dict(), request)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled %s on %s", type(exc).__name__, request.url.path, exc_info=exc)
        message = str(exc) if settings.DEBUG else "Internal server error"
        error = {"code": "INTERNAL_ERROR", "message": message, "status": 500}
        return _error_response(500, error, request)
