"""Dependency normalization.

Plans produced by an LLM planner (or typed by a user) reference other steps
loosely: ``"Step 2"``, ``"2"``, a step's title, or a step's id.  Before any
graph operation runs, every reference is parsed into a tagged
:data:`DependencyReference` and resolved to a canonical task id.

Resolution order, first match wins:

1. ``"Step N"`` -> the task at display index ``N - 1``
2. ``"N"`` -> same ordinal resolution
3. exact title of another task
4. exact id of another task

Ordinals that are out of range, or that point at the task itself, fall
through to the title / id checks.  References that resolve to nothing are
kept verbatim; the executor treats them as unmet.  Normalization is pure and
idempotent: task ids never read as step references, so an id written
back by one pass resolves to itself on the next.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from todochain.core.task.models import (
    ORDINAL_REFERENCE_PATTERN,
    STEP_REFERENCE_PATTERN,
    Task,
)
from todochain.utils.logging import get_logger

logger = get_logger("task.normalizer")


@dataclass(frozen=True)
class StepReference:
    """``"Step N"`` style reference (1-based)."""

    raw: str
    number: int


@dataclass(frozen=True)
class OrdinalReference:
    """Bare integer reference (1-based)."""

    raw: str
    number: int


@dataclass(frozen=True)
class NameReference:
    """A title or an id; which one is decided at resolution time."""

    raw: str


DependencyReference = Union[StepReference, OrdinalReference, NameReference]


def parse_reference(raw: str) -> DependencyReference:
    """Classify a raw dependency string."""
    match = STEP_REFERENCE_PATTERN.match(raw)
    if match:
        return StepReference(raw=raw, number=int(match.group(1)))
    match = ORDINAL_REFERENCE_PATTERN.match(raw)
    if match:
        return OrdinalReference(raw=raw, number=int(match.group(1)))
    return NameReference(raw=raw)


def resolve_reference(
    ref: DependencyReference,
    index: int,
    tasks: list[Task],
) -> str | None:
    """Resolve *ref* for the task at display *index* to a task id.

    Returns ``None`` when nothing in *tasks* matches.
    """
    own = tasks[index]

    if isinstance(ref, (StepReference, OrdinalReference)):
        position = ref.number - 1
        if 0 <= position < len(tasks) and position != index:
            return tasks[position].id

    by_title = next((t for t in tasks if t.title == ref.raw), None)
    if by_title is not None and by_title.id != own.id:
        return by_title.id

    if ref.raw != own.id and any(t.id == ref.raw for t in tasks):
        return ref.raw

    return None


def normalize_dependencies(task: Task, index: int, tasks: list[Task]) -> list[str]:
    """Return the canonical dependency list for *task*.

    Unresolved references are kept verbatim; self references are dropped.
    """
    normalized: list[str] = []
    for raw in task.dependencies:
        resolved = resolve_reference(parse_reference(raw), index, tasks)
        if resolved is None:
            if raw == task.id:
                logger.debug("self_dependency_dropped", task_id=task.id)
                continue
            logger.debug("unresolved_dependency", task_id=task.id, reference=raw)
            resolved = raw
        if resolved not in normalized:
            normalized.append(resolved)
    return normalized


def normalize_tasks(tasks: list[Task]) -> list[Task]:
    """Return copies of *tasks* with normalized dependencies.

    The input list and its tasks are left untouched.
    """
    return [
        task.model_copy(
            update={"dependencies": normalize_dependencies(task, idx, tasks)}
        )
        for idx, task in enumerate(tasks)
    ]
