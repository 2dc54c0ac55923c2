"""Error taxonomy for registry, allocation and execution."""

from __future__ import annotations

from swarm_dispatch.orchestrator.models import TaskStatus


class SwarmDispatchError(Exception):
    """Base class for orchestrator errors."""


class TaskNotFound(SwarmDispatchError, KeyError):
    """Raised when a task id is not present in the registry."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Unknown task id {self.task_id!r}"


class InvalidDependency(SwarmDispatchError, ValueError):
    """Dependency references an unknown task or would form a cycle."""


class InvalidTransition(SwarmDispatchError):
    """Requested status change is not an edge of the task state machine."""

    def __init__(self, task_id: str, status_from: TaskStatus, status_to: TaskStatus) -> None:
        super().__init__(
            f"Task {task_id!r} cannot move from {status_from.value} to {status_to.value}",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class ChaosFault(SwarmDispatchError):
    """Injected transient tool failure. Always retryable."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(
            f"Chaos fault: tool {tool_name!r} is temporarily unavailable (device or resource busy)",
        )
        self.tool_name = tool_name


class ExecutionFailure(SwarmDispatchError):
    """Real failure surfaced by the execution collaborator."""

    def __init__(self, reason: str, *, transient: bool = True) -> None:
        super().__init__(reason)
        self.reason = reason
        self.transient = transient
