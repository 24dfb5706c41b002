"""
Domain error taxonomy.

Services raise these; ``install_error_handlers`` maps them to JSON responses
at the HTTP edge so the service layer never depends on FastAPI.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from spendtrail.core.logging import get_logger, log_event

logger = get_logger(__name__)


class SpendTrailError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(SpendTrailError):
    status_code = status.HTTP_400_BAD_REQUEST


class PayloadTooLarge(ValidationError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UnsupportedMediaType(ValidationError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class AuthorizationError(SpendTrailError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SpendTrailError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SpendTrailError):
    status_code = status.HTTP_409_CONFLICT


class TransientStoreError(SpendTrailError):
    # Not a failure from the caller's point of view: the row is expected to show up.
    status_code = status.HTTP_202_ACCEPTED


class ExtractionFailure(SpendTrailError):
    status_code = status.HTTP_502_BAD_GATEWAY


def _handle_domain_error(request: Request, exc: SpendTrailError) -> JSONResponse:
    log_event(
        logger,
        "http.request.rejected",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SpendTrailError, _handle_domain_error)
