"""Agent Invocation Service boundary.

The chain executor never talks to an agent directly; it hands an
:class:`InvocationRequest` to an :class:`AgentInvocationService` and gets an
:class:`InvocationResult` back.  A service either reports failure through
``success=False`` or raises; the executor treats both the same way.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from todochain.core.task.models import Task

# Placeholder a task input value can hold to receive the previous step's output.
DEPENDENCY_OUTPUT_MARKER = "{{dependency.output}}"

_HYDRATED_SECTIONS = ("body", "extra_body")


class InvocationRequest(BaseModel):
    """One call to the Agent Invocation Service.

    Attributes:
        task_id: The task being executed.
        current_input: Output of the previous step (or the initial input).
        task: Snapshot of the task at dispatch time.
        plan_id: Owning plan, for services that key state by conversation.
    """

    task_id: str
    current_input: str
    task: Task
    plan_id: str = ""


class InvocationResult(BaseModel):
    """Outcome reported by the Agent Invocation Service.

    Attributes:
        success: Whether the agent completed the task.
        task: The updated task (output, metrics) on success.
        error: Human-readable error on failure.
    """

    success: bool
    task: Task | None = None
    error: str | None = None


class AgentInvocationService(ABC):
    """Executes exactly one task per call."""

    @abstractmethod
    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        """Run ``request.task`` with ``request.current_input``."""

    async def aclose(self) -> None:
        """Release transport resources.  No-op by default."""


def is_dependency_output_value(value: Any) -> bool:
    return isinstance(value, str) and value.strip() == DEPENDENCY_OUTPUT_MARKER


def hydrate_task_input(task_input: Any, current_input: str) -> Any:
    """Replace dependency-output markers in ``body`` / ``extra_body``.

    Only the top-level values of those two sections are inspected.  The
    original payload is not modified.
    """
    if not isinstance(task_input, dict):
        return task_input

    hydrated = copy.deepcopy(task_input)
    for section in _HYDRATED_SECTIONS:
        values = hydrated.get(section)
        if isinstance(values, dict):
            for key, value in values.items():
                if is_dependency_output_value(value):
                    values[key] = current_input
        elif isinstance(values, list):
            hydrated[section] = [
                current_input if is_dependency_output_value(v) else v for v in values
            ]
    return hydrated
