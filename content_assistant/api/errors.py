"""Gestion standardisée des erreurs API avec enveloppes d'erreur.

Traduit la taxonomie du cœur en réponses JSON `{code, message, trace_id}`:
- ValidationError → 400, NotFoundError → 404
- CollaboratorError → 502 (504 en cas de dépassement de délai, 503 si non configuré)
- toute autre exception → 500
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from content_assistant.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_BAD_REQUEST,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_SERVICE_UNAVAILABLE,
)
from content_assistant.domain.errors import (
    CollaboratorError,
    DataIntegrityError,
    NotFoundError,
)

log = structlog.get_logger(__name__).bind(component="api_errors")

ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    trace_id: str | None = None
    details: dict[str, Any] | None = None


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    trace_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    envelope = ErrorEnvelope(code=code, message=message, trace_id=trace_id, details=details)
    return JSONResponse(
        status_code=status_code,
        content={
            "code": envelope.code,
            "message": envelope.message,
            "trace_id": envelope.trace_id,
            **({"details": envelope.details} if envelope.details else {}),
        },
    )


def extract_trace_id(request: Request) -> str | None:
    """Extract trace ID from request headers or from the request-id middleware."""
    trace_id = request.headers.get("X-Trace-ID")
    if trace_id:
        return trace_id
    return getattr(request.state, "trace_id", None)


def collaborator_status(exc: CollaboratorError) -> int:
    """Statut HTTP exposé pour une erreur de collaborateur."""
    if exc.status_code in (HTTP_GATEWAY_TIMEOUT, HTTP_SERVICE_UNAVAILABLE):
        return exc.status_code
    return HTTP_BAD_GATEWAY


def handle_data_integrity_error(request: Request, exc: DataIntegrityError) -> JSONResponse:
    """Erreur client: 400, ou 404 pour une référence inexistante."""
    status = HTTP_NOT_FOUND if isinstance(exc, NotFoundError) else HTTP_BAD_REQUEST
    return create_error_response(
        status_code=status,
        code=ERROR_CODES[status],
        message=str(exc),
        trace_id=extract_trace_id(request),
    )


def handle_collaborator_error(request: Request, exc: CollaboratorError) -> JSONResponse:
    """Erreur de transport d'un collaborateur."""
    status = collaborator_status(exc)
    trace_id = extract_trace_id(request)
    log.error(
        "collaborator_error",
        error_type=type(exc).__name__,
        upstream_status=exc.status_code,
        trace_id=trace_id,
    )
    return create_error_response(
        status_code=status,
        code=ERROR_CODES[status],
        message=exc.message,
        trace_id=trace_id,
    )


def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with standard envelope."""
    return create_error_response(
        status_code=exc.status_code,
        code=ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail),
        trace_id=extract_trace_id(request),
    )


def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Corps de requête invalide: 400 avec le détail des champs."""
    return create_error_response(
        status_code=HTTP_BAD_REQUEST,
        code=ERROR_CODES[HTTP_BAD_REQUEST],
        message="invalid request",
        trace_id=extract_trace_id(request),
        details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
    )


def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Erreur inattendue: 500 sans détail interne."""
    trace_id = extract_trace_id(request)
    log.exception("unexpected_error", error_type=type(exc).__name__, trace_id=trace_id)
    return create_error_response(
        status_code=HTTP_INTERNAL_SERVER_ERROR,
        code=ERROR_CODES[HTTP_INTERNAL_SERVER_ERROR],
        message="internal error",
        trace_id=trace_id,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Branche les gestionnaires d'erreurs sur l'application."""
    app.add_exception_handler(DataIntegrityError, handle_data_integrity_error)
    app.add_exception_handler(CollaboratorError, handle_collaborator_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
