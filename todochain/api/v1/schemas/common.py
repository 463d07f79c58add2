"""Common response schemas used across all API endpoints."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint on failure.

    ``plan_id`` / ``task_id`` are filled in when the error concerns a
    specific plan or task.
    """

    error: str
    detail: str = ""
    plan_id: str | None = None
    task_id: str | None = None
