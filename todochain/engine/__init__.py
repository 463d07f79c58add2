"""Execution engine -- chain executor, cancellation and run bookkeeping.

Public API::

    from todochain.engine import (
        CancellationToken,
        ChainExecutor,
        ExecutionRun,
        RunRegistry,
        RunState,
    )
"""

from todochain.engine.cancellation import CancellationToken
from todochain.engine.executor import ChainExecutor, ExecutionRun, RunState
from todochain.engine.runs import RunRegistry

__all__ = [
    "CancellationToken",
    "ChainExecutor",
    "ExecutionRun",
    "RunRegistry",
    "RunState",
]
