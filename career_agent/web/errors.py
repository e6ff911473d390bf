"""Exception handlers rendering the API error contract."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import APIError, ErrorKind, toast_for

logger = logging.getLogger("career_agent.web.api")


def error_response(status_code: int, code: str, message: str, details: dict | None = None, kind: ErrorKind | None = None) -> JSONResponse:
    err = APIError(status_code=status_code, code=code, message=message, details=details, kind=kind)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
    """Render contract-compliant error response."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Normalize FastAPI validation errors to API contract shape."""
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "BAD_REQUEST",
                "message": "Invalid request payload",
                "details": {
                    "errors": jsonable_encoder(exc.errors()),
                    "kind": ErrorKind.BAD_REQUEST.value,
                    "toast": toast_for(ErrorKind.BAD_REQUEST),
                },
            }
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return error_response(500, "INTERNAL_ERROR", "Internal server error", kind=ErrorKind.INTERNAL)
