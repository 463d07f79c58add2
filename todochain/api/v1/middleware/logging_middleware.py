"""Request / response logging middleware using structlog.

Every request is logged with its method, path, status code and timing.
Requests against a plan also carry the ``plan_id`` so API logs line up with
the executor's ``run_*`` / ``task_*`` events for the same plan.
"""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from todochain.utils.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"

_PLAN_PATH = re.compile(r"/plans/([^/]+)")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every HTTP request and echoes a request id back to the caller."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        match = _PLAN_PATH.search(request.url.path)
        context = {
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
            "plan_id": match.group(1) if match else None,
        }

        logger.info("request_started", **context)

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "request_failed",
                elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
                **context,
            )
            raise

        log_fn = logger.info if response.status_code < 400 else logger.warning
        log_fn(
            "request_completed",
            status_code=response.status_code,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
            **context,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
