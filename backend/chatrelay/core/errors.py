"""Client-facing errors, always rendered as ``{"success": false, "error": ...}``."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class RequestError(Exception):
    def __init__(self, message: str, status_code: int = 400, **extra: Any):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra


def error_response(message: str, status_code: int = 400, headers: dict | None = None, **extra: Any) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": message, **extra},
        status_code=status_code,
        headers=headers,
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON in request body"
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


async def _request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return error_response(exc.message, exc.status_code, **exc.extra)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(_describe_validation_error(exc), 400)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestError, _request_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)  # type: ignore[arg-type]
