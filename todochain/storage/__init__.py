"""Plan persistence backends."""

from todochain.storage.plan_store import (
    InMemoryPlanStore,
    JsonFilePlanStore,
    PlanStore,
    create_plan_store,
)

__all__ = [
    "InMemoryPlanStore",
    "JsonFilePlanStore",
    "PlanStore",
    "create_plan_store",
]
