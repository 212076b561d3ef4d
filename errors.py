"""
API Errors and Response Envelope

Every request-level failure is one of the ApiError subclasses below, each
mapped to exactly one HTTP status. Handlers registered by install_error_handlers
render them as {"error": <reason phrase>, "message": <detail>}.
"""

import logging
from http import HTTPStatus
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ApiError):
    status_code = HTTPStatus.BAD_REQUEST


class Unauthorized(ApiError):
    status_code = HTTPStatus.UNAUTHORIZED


class Forbidden(ApiError):
    status_code = HTTPStatus.FORBIDDEN


class NotFound(ApiError):
    status_code = HTTPStatus.NOT_FOUND


class Conflict(ApiError):
    status_code = HTTPStatus.CONFLICT


class Internal(ApiError):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR


def envelope(message: str, data: Optional[Any] = None) -> dict:
    body = {"message": message}
    if data is not None:
        body["data"] = data
    return body


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=int(status_code),
        content={"error": HTTPStatus(status_code).phrase, "message": message},
    )


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(HTTPStatus.BAD_REQUEST, _format_validation_error(exc))

    @app.exception_handler(DuplicateKeyError)
    async def handle_duplicate_key(request: Request, exc: DuplicateKeyError):
        return error_response(HTTPStatus.CONFLICT, "Resource already exists")

    @app.exception_handler(PyMongoError)
    async def handle_store_error(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "Database error")
