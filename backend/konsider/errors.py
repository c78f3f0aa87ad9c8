"""API error types and their mapping to HTTP responses.

Services raise subclasses of `ApiError`; the handlers registered by
`register_exception_handlers` turn them into a JSON body of the form
``{"error": "<CLIENT_ERROR>"}``. The detailed message is only ever
written to the server log, never returned to the client.
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

LOGGER = logging.getLogger("konsider.api")

INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
NO_AUTH = "NO_AUTH"
INVALID_PERMISSIONS = "INVALID_PERMISSIONS"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
INVALID_PARAMS = "INVALID_PARAMS"
RATE_LIMITED = "RATE_LIMITED"
SERVICE_ERROR = "SERVICE_ERROR"

_STATUS_TO_CODE = {
    400: INVALID_PARAMS,
    401: NO_AUTH,
    403: INVALID_PERMISSIONS,
    404: NOT_FOUND,
    405: NOT_FOUND,
    409: CONFLICT,
    422: INVALID_PARAMS,
    429: RATE_LIMITED,
}


class ApiError(RuntimeError):
    status_code = 500
    code = SERVICE_ERROR

    def __init__(self, message: str = "", headers: dict | None = None):
        super().__init__(message or self.code.lower())
        self.message = message or self.code.lower()
        self.headers = headers


class ValidationError(ApiError, ValueError):
    """A payload field failed validation."""
    status_code = 400
    code = INVALID_PARAMS


class NoUpdatesError(ValidationError):
    def __init__(self, message: str = "no updates provided"):
        super().__init__(message)


class QueryParamError(ValidationError):
    pass


class InvalidCredentialsError(ApiError):
    status_code = 401
    code = INVALID_CREDENTIALS


class NotAuthenticatedError(ApiError):
    status_code = 401
    code = NO_AUTH


class PermissionDeniedError(ApiError):
    status_code = 403
    code = INVALID_PERMISSIONS


class NotFoundError(ApiError):
    status_code = 404
    code = NOT_FOUND


class ConflictError(ApiError):
    """Unique violation, dependent records or a stale `version`."""
    status_code = 409
    code = CONFLICT


class RateLimitedError(ApiError):
    status_code = 429
    code = RATE_LIMITED

    def __init__(self, retry_after: int):
        super().__init__(f"rate limit exceeded; retry after {retry_after}s", headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


def error_response(status_code: int, code: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code}, headers=headers)


def _log_failure(request: Request, status_code: int, code: str, message: str) -> None:
    payload = json.dumps(
        {
            "request_id": getattr(request.state, "request_id", ""),
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "error": code,
            "detail": message,
        },
        ensure_ascii=True,
    )
    if status_code >= 500:
        LOGGER.error("request_error %s", payload)
    else:
        LOGGER.warning("request_error %s", payload)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error_handler(request: Request, exc: ApiError):
        _log_failure(request, exc.status_code, exc.code, exc.message)
        return error_response(exc.status_code, exc.code, exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError):
        # missing or malformed JSON bodies, bad path ids and bad enum values
        _log_failure(request, 400, INVALID_PARAMS, str(exc.errors()))
        return error_response(400, INVALID_PARAMS)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException):
        code = _STATUS_TO_CODE.get(exc.status_code, SERVICE_ERROR)
        _log_failure(request, exc.status_code, code, str(exc.detail))
        return error_response(exc.status_code, code, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        LOGGER.exception(
            "request_unhandled %s",
            json.dumps(
                {
                    "request_id": getattr(request.state, "request_id", ""),
                    "path": request.url.path,
                    "method": request.method,
                },
                ensure_ascii=True,
            ),
        )
        return error_response(500, SERVICE_ERROR)
