"""Agent Invocation Service boundary and its HTTP implementation."""

from todochain.core.agents.base import (
    DEPENDENCY_OUTPUT_MARKER,
    AgentInvocationService,
    InvocationRequest,
    InvocationResult,
    hydrate_task_input,
)
from todochain.core.agents.client import HttpAgentInvoker

__all__ = [
    "DEPENDENCY_OUTPUT_MARKER",
    "AgentInvocationService",
    "HttpAgentInvoker",
    "InvocationRequest",
    "InvocationResult",
    "hydrate_task_input",
]
