"""HTTP client for a remote Agent Invocation Service.

Each task is executed with one ``POST`` to the service::

    POST {base_url}/api/chat/{plan_id}/execute-todo/{task_id}
    {"initialInput": "...", "agentId": "...", "input": {...}}

and the service answers with::

    {"success": true, "data": {"output": ..., "tokenUsage": {...},
                               "duration": 1234, "cost": 0.01,
                               "responseFormat": "string"}}
    {"success": false, "error": "..."}

Requests are plain ``httpx`` coroutines, so cancelling the awaiting task
aborts the in-flight call.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError

from todochain.core.agents.base import (
    AgentInvocationService,
    InvocationRequest,
    InvocationResult,
    hydrate_task_input,
)
from todochain.core.task.models import TokenUsage
from todochain.utils.exceptions import AgentInvocationError
from todochain.utils.logging import get_logger

DEFAULT_INVOKE_PATH = "/api/chat/{plan_id}/execute-todo/{task_id}"


class HttpAgentInvoker(AgentInvocationService):
    """Invoke agents over HTTP.

    Parameters
    ----------
    base_url:
        Root URL of the agent service.
    timeout_seconds:
        Per-request timeout.  Agent runs can be slow; keep this generous.
    invoke_path:
        Path template, formatted with ``plan_id`` and ``task_id``.
    client:
        Optional pre-built :class:`httpx.AsyncClient` (tests pass one with a
        mock transport).  When omitted the invoker owns its client.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 300.0,
        invoke_path: str = DEFAULT_INVOKE_PATH,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.invoke_path = invoke_path
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self.logger = get_logger("agents.http")

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        task = request.task
        path = self.invoke_path.format(plan_id=request.plan_id, task_id=request.task_id)
        payload: dict[str, Any] = {
            "initialInput": request.current_input,
            "agentId": task.agent_id,
        }
        if task.input is not None:
            payload["input"] = hydrate_task_input(task.input, request.current_input)

        self.logger.info("agent_invoke_start", task_id=task.id, agent_id=task.agent_id)
        start = time.monotonic()

        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            self.logger.error(
                "agent_invoke_transport_error",
                task_id=task.id,
                agent_id=task.agent_id,
                error=str(exc),
            )
            raise AgentInvocationError(task.agent_id, str(exc)) from exc

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        body = self._parse_body(response)

        if response.is_error or not body.get("success"):
            error = body.get("error") or f"HTTP {response.status_code}"
            self.logger.warning(
                "agent_invoke_failed",
                task_id=task.id,
                status_code=response.status_code,
                error=error,
            )
            return InvocationResult(success=False, error=str(error))

        data = body.get("data") or {}
        updated = task.model_copy(deep=True)
        updated.output = data.get("output", data.get("response"))
        updated.duration = data.get("duration") or elapsed_ms
        updated.response_format = data.get("responseFormat") or "string"
        updated.token_usage = self._parse_token_usage(data.get("tokenUsage"))
        updated.cost = data.get("cost")
        if updated.cost is None and isinstance(data.get("tokenUsage"), dict):
            updated.cost = (data["tokenUsage"].get("pricing") or {}).get("total_cost")

        self.logger.info("agent_invoke_complete", task_id=task.id, elapsed_ms=elapsed_ms)
        return InvocationResult(success=True, task=updated)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse_body(self, response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {"success": False, "error": response.text or f"HTTP {response.status_code}"}
        return body if isinstance(body, dict) else {"success": False, "error": "Malformed response"}

    def _parse_token_usage(self, raw: Any) -> TokenUsage | None:
        if not isinstance(raw, dict):
            return None
        try:
            return TokenUsage.model_validate(raw)
        except ValidationError:
            self.logger.debug("token_usage_unparsed", raw=raw)
            return None
