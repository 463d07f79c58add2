class TodoChainError(Exception):
    """Base exception for the todo chain engine."""


class PlanNotFoundError(TodoChainError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class TaskNotFoundError(TodoChainError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class DuplicateTaskError(TodoChainError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task id already exists in plan: {task_id}")


class PlanLockedError(TodoChainError):
    def __init__(self, plan_id: str, detail: str = "an execution run is active"):
        self.plan_id = plan_id
        super().__init__(f"Plan '{plan_id}' cannot be edited: {detail}")


class FrozenTaskError(TodoChainError):
    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task '{task_id}' is {status} and cannot be moved")


class InvalidReorderError(TodoChainError):
    def __init__(self, from_index: int, to_index: int, size: int):
        self.from_index = from_index
        self.to_index = to_index
        super().__init__(
            f"Cannot move task from {from_index} to {to_index} in a plan of {size} tasks"
        )


class CyclicDependencyError(TodoChainError):
    """Raised when the task dependency graph contains a cycle."""


class AgentInvocationError(TodoChainError):
    def __init__(self, agent_id: str, detail: str):
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' invocation failed: {detail}")


class PlanStoreError(TodoChainError):
    pass
