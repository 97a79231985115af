"""Translate engine exceptions into HTTP responses.

Every error body has the same shape:

    {"error": "week_locked", "message": "Week 3 is locked ...", "timestamp": 1767225600}

``error`` is the stable code from core/errors.py.  Request validation
failures use ``validation_failed`` so clients see one vocabulary.
Anything unexpected is logged with its traceback and answered as a
bare 500 ``internal_error``; the message never leaks internals.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cohort_engine.core.errors import EngineError

logger = logging.getLogger(__name__)


def error_body(error: str, message: str) -> dict:
    return {"error": error, "message": message, "timestamp": int(time.time())}


async def _engine_error(request: Request, exc: EngineError) -> JSONResponse:
    level = logging.INFO if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        "%s %s rejected: %s (%s)",
        request.method,
        request.url.path,
        exc.error,
        exc.message,
        extra={"error": exc.error},
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.error, exc.message))


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "Invalid request"
    return JSONResponse(status_code=422, content=error_body("validation_failed", message))


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, extra={"error": "internal_error"}
    )
    return JSONResponse(
        status_code=500, content=error_body("internal_error", "Internal server error")
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, _engine_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unexpected_error)
