from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

USER_HEADER = "X-User-Id"
REQUEST_ID_HEADER = "X-Request-Id"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id and caller to the log context for the duration of a request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            caller_id=request.headers.get(USER_HEADER),
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            structlog.contextvars.bind_contextvars(elapsed_ms=_elapsed_ms(started))
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info("request_completed", status_code=response.status_code)
            return response
        except Exception:
            logger.exception("request_crashed", elapsed_ms=_elapsed_ms(started))
            raise
        finally:
            structlog.contextvars.clear_contextvars()
