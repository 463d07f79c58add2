"""Plan persistence -- durable storage of task lists keyed by plan id.

Two backends are provided:

* :class:`InMemoryPlanStore` keeps plans in a dict; used in tests and for
  ephemeral deployments.
* :class:`JsonFilePlanStore` writes every plan into a single JSON document
  on disk so plans survive a restart.

Both return deep copies so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from todochain.core.task.models import Plan
from todochain.utils.exceptions import PlanStoreError
from todochain.utils.file_utils import ensure_parent_dir, sibling_tmp_path
from todochain.utils.logging import get_logger

logger = get_logger(__name__)


class PlanStore(ABC):
    """Abstract plan store."""

    @abstractmethod
    async def get(self, plan_id: str) -> Plan | None:
        """Return the stored plan or ``None``."""

    @abstractmethod
    async def save(self, plan: Plan) -> None:
        """Persist the full task list of *plan*, replacing any previous copy."""

    @abstractmethod
    async def delete(self, plan_id: str) -> bool:
        """Remove a plan.  Returns ``True`` when something was deleted."""

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Return the ids of all stored plans."""


class InMemoryPlanStore(PlanStore):
    def __init__(self) -> None:
        self._plans: dict[str, Plan] = {}

    async def get(self, plan_id: str) -> Plan | None:
        plan = self._plans.get(plan_id)
        return plan.model_copy(deep=True) if plan is not None else None

    async def save(self, plan: Plan) -> None:
        plan.touch()
        self._plans[plan.plan_id] = plan.model_copy(deep=True)
        logger.debug("plan_saved", plan_id=plan.plan_id, tasks=len(plan.tasks))

    async def delete(self, plan_id: str) -> bool:
        return self._plans.pop(plan_id, None) is not None

    async def list_ids(self) -> list[str]:
        return list(self._plans)


class JsonFilePlanStore(PlanStore):
    """Stores all plans in one JSON file, ``{plan_id: plan}``.

    Reads and writes go through an :class:`asyncio.Lock` so concurrent
    saves from the editor and the executor never interleave.

    Parameters
    ----------
    path:
        Location of the JSON document.  Parent directories are created on
        first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def get(self, plan_id: str) -> Plan | None:
        async with self._lock:
            data = await self._read()
        raw = data.get(plan_id)
        if raw is None:
            return None
        try:
            return Plan.model_validate(raw)
        except ValidationError as exc:
            raise PlanStoreError(f"Stored plan '{plan_id}' is invalid: {exc}") from exc

    async def save(self, plan: Plan) -> None:
        plan.touch()
        async with self._lock:
            data = await self._read()
            data[plan.plan_id] = plan.model_dump(mode="json")
            await self._write(data)
        logger.debug("plan_saved", plan_id=plan.plan_id, tasks=len(plan.tasks))

    async def delete(self, plan_id: str) -> bool:
        async with self._lock:
            data = await self._read()
            if data.pop(plan_id, None) is None:
                return False
            await self._write(data)
        logger.info("plan_deleted", plan_id=plan_id)
        return True

    async def list_ids(self) -> list[str]:
        async with self._lock:
            data = await self._read()
        return list(data)

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    async def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as fh:
                contents = await fh.read()
        except OSError as exc:
            raise PlanStoreError(f"Failed to read {self.path}: {exc}") from exc

        if not contents.strip():
            return {}
        try:
            data = json.loads(contents)
        except json.JSONDecodeError as exc:
            raise PlanStoreError(f"Corrupt plan store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PlanStoreError(f"Unexpected plan store layout in {self.path}")
        return data

    async def _write(self, data: dict) -> None:
        ensure_parent_dir(self.path)
        tmp_path = sibling_tmp_path(self.path)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
                await fh.write(json.dumps(data, indent=2, ensure_ascii=False))
            tmp_path.replace(self.path)
        except OSError as exc:
            logger.error("plan_store_write_failed", path=str(self.path), error=str(exc))
            raise PlanStoreError(f"Failed to write {self.path}: {exc}") from exc


def create_plan_store(backend: str, path: str | Path) -> PlanStore:
    """Build the configured plan store backend."""
    if backend == "memory":
        return InMemoryPlanStore()
    if backend == "json":
        return JsonFilePlanStore(path)
    raise PlanStoreError(f"Unknown plan store backend: {backend}")
