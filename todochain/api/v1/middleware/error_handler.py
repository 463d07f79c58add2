"""Global error-handling middleware.

Catches todo chain exceptions and translates them into structured JSON
error responses with appropriate HTTP status codes.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from todochain.api.v1.schemas.common import ErrorResponse
from todochain.utils.exceptions import (
    AgentInvocationError,
    CyclicDependencyError,
    DuplicateTaskError,
    FrozenTaskError,
    InvalidReorderError,
    PlanLockedError,
    PlanNotFoundError,
    PlanStoreError,
    TaskNotFoundError,
    TodoChainError,
)
from todochain.utils.logging import get_logger

logger = get_logger(__name__)

# Map exception types to HTTP status codes.
_STATUS_MAP: dict[type, int] = {
    PlanNotFoundError: 404,
    TaskNotFoundError: 404,
    PlanLockedError: 409,
    DuplicateTaskError: 409,
    FrozenTaskError: 409,
    InvalidReorderError: 422,
    CyclicDependencyError: 422,
    AgentInvocationError: 502,
    PlanStoreError: 500,
}


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that wraps every request in a try/except and converts
    known exceptions to JSON error responses.

    Unknown exceptions are logged and returned as HTTP 500.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)

        except TodoChainError as exc:
            status_code = _STATUS_MAP.get(type(exc), 500)
            body = ErrorResponse(
                error=type(exc).__name__,
                detail=str(exc),
                plan_id=getattr(exc, "plan_id", None),
                task_id=getattr(exc, "task_id", None),
            )
            logger.warning(
                "handled_error",
                error_type=body.error,
                status_code=status_code,
                detail=body.detail,
                plan_id=body.plan_id,
                task_id=body.task_id,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=status_code,
                content=body.model_dump(exclude_none=True),
            )

        except Exception as exc:
            logger.error(
                "unhandled_error",
                error_type=type(exc).__name__,
                detail=str(exc),
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.  Please try again later.",
                },
            )
