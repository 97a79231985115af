"""Request context middleware: request IDs, acting user, timing.

WHY REQUEST IDs
-----------------
Completion requests interleave.  A topic completion for one learner
cascades into a week unlock while another learner's quiz is graded:

  INFO  [req-abc] Topic completed user=u-1 ...
  INFO  [req-xyz] Quiz graded user=u-2 ...
  INFO  [req-abc] Week unlocked user=u-1 week=2 trigger=cascade

The request ID ties the cascade's log lines back to the call that
caused it.

WHY CONTEXT VARIABLES (NOT THREAD-LOCALS)
-------------------------------------------
FastAPI runs many requests concurrently on the same thread.  A
``ContextVar`` gives each request its own value; threading.local()
would leak between them.

The acting user is a second ContextVar, set by require_user() once the
bearer token is validated, so every log line in the cascade carries
``user_id`` without each service passing it to its logger.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")


class RequestContextFilter(logging.Filter):
    """Attach request_id (and user_id, unless the call site set one) to records.

    A filter, not a formatter: formatters can only read fields that
    already exist on the LogRecord.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if not hasattr(record, "user_id"):
            record.user_id = user_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Logger filters do not see records propagated from child loggers, so
# main.py also attaches one to the root handler.  Guard against duplicate
# installation across module reloads.
root_logger = logging.getLogger()
if not any(isinstance(f, RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, and log one summary line.

    The X-Request-ID header is honoured when the client sends one and
    echoed on the response either way.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set("-")

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
