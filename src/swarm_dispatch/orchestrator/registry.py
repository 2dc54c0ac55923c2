"""In-memory task registry with dependency graph and status state machine."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any
from uuid import uuid4

from swarm_dispatch.orchestrator.errors import InvalidDependency, InvalidTransition, TaskNotFound
from swarm_dispatch.orchestrator.models import (
    FailureClass,
    Provider,
    Task,
    TaskCreate,
    TaskEvent,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class TaskRegistry:
    """Single source of truth for task existence, dependencies and status.

    All state lives behind one re-entrant lock, so cycle detection and
    transition checks observe a consistent graph. Tasks only move forward
    through the state machine, which lets readers work from snapshots.
    Every returned `Task` is a copy; mutating it does not touch the registry.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._tasks: dict[str, Task] = {}
        self._events: list[TaskEvent] = []
        self._version = 0

    def create_task(self, payload: TaskCreate) -> Task:
        """Validate and insert a new pending task."""

        title = payload.title.strip()
        if not title:
            raise ValueError("Task title must not be empty.")
        dependencies = tuple(payload.dependencies)
        skills = frozenset(skill.strip() for skill in payload.required_skills if skill.strip())

        with self._lock:
            task_id = str(uuid4())
            self._validate_dependencies(task_id=task_id, dependencies=dependencies)
            now = utc_now()
            task = Task(
                task_id=task_id,
                title=title,
                description=payload.description,
                required_skills=skills,
                dependencies=dependencies,
                priority=payload.priority,
                status=TaskStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._tasks[task_id] = task
            self._add_event(
                task_id=task_id,
                event_type="task_created",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={"dependencies": list(dependencies), "priority": payload.priority.value},
            )
            self._notify()
            logger.debug("Created task %s (%s) deps=%s", task_id, title, list(dependencies))
            return replace(task)

    def update_dependencies(self, task_id: str, dependencies: tuple[str, ...]) -> Task:
        """Replace the dependencies of a pending task, rejecting cycles."""

        dependencies = tuple(dependencies)
        with self._lock:
            task = self._require(task_id)
            if task.status != TaskStatus.PENDING:
                raise InvalidDependency(
                    f"Task {task_id!r} is {task.status.value}; "
                    "dependencies can only change while pending.",
                )
            self._validate_dependencies(task_id=task_id, dependencies=dependencies)
            previous = task.dependencies
            task.dependencies = dependencies
            task.updated_at = utc_now()
            self._add_event(
                task_id=task_id,
                event_type="dependencies_updated",
                status_from=task.status,
                status_to=task.status,
                details={"previous": list(previous), "dependencies": list(dependencies)},
            )
            self._notify()
            return replace(task)

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task is not None else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        """All tasks in insertion order, optionally filtered by status."""

        with self._lock:
            return [
                replace(task)
                for task in self._tasks.values()
                if status is None or task.status == status
            ]

    def list_eligible(self) -> list[Task]:
        """Pending tasks whose dependencies are all completed, in insertion order."""

        with self._lock:
            return [replace(task) for task in self._tasks.values() if self._is_eligible(task)]

    def list_stuck(self) -> list[Task]:
        """Pending tasks that can never become eligible because an upstream task failed."""

        with self._lock:
            blocked: dict[str, bool] = {}
            return [
                replace(task)
                for task in self._tasks.values()
                if task.status == TaskStatus.PENDING and self._is_blocked(task.task_id, blocked)
            ]

    def list_events(self, task_id: str | None = None) -> list[TaskEvent]:
        with self._lock:
            return [
                replace(event, details=dict(event.details))
                for event in self._events
                if task_id is None or event.task_id == task_id
            ]

    def transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        *,
        reason: str | None = None,
    ) -> Task:
        """Move a task along the state machine or raise `InvalidTransition`."""

        with self._lock:
            task = self._require(task_id)
            self._apply_transition(task, new_status, details={"reason": reason} if reason else {})
            return replace(task)

    def claim(self, task_id: str, *, agent_id: str, provider: Provider | None = None) -> Task:
        """Atomically move a pending task to in_progress and record the winning agent."""

        with self._lock:
            task = self._require(task_id)
            self._apply_transition(
                task,
                TaskStatus.IN_PROGRESS,
                details={"agent_id": agent_id},
            )
            self._set_assignment(task, agent_id=agent_id, provider=provider)
            return replace(task)

    def assign(self, task_id: str, *, agent_id: str, provider: Provider | None = None) -> Task:
        """Record (or replace) the agent/provider serving an in-flight task."""

        with self._lock:
            task = self._require(task_id)
            if task.is_terminal:
                raise InvalidTransition(task_id, task.status, task.status)
            self._set_assignment(task, agent_id=agent_id, provider=provider)
            return replace(task)

    def start_attempt(self, task_id: str) -> int:
        """Increment and return the attempt counter of an in-flight task."""

        with self._lock:
            task = self._require(task_id)
            if task.status != TaskStatus.IN_PROGRESS:
                raise InvalidTransition(task_id, task.status, TaskStatus.IN_PROGRESS)
            task.attempts += 1
            task.updated_at = utc_now()
            self._add_event(
                task_id=task_id,
                event_type="attempt_started",
                status_from=task.status,
                status_to=task.status,
                details={
                    "attempt": task.attempts,
                    "agent_id": task.assigned_agent_id,
                    "provider": task.provider.value if task.provider else None,
                },
            )
            return task.attempts

    def record_failure(self, task_id: str, *, failure_class: FailureClass, reason: str) -> Task:
        """Store a failure reason on the task without changing its status."""

        with self._lock:
            task = self._require(task_id)
            if task.is_terminal:
                raise InvalidTransition(task_id, task.status, task.status)
            task.failure_class = failure_class
            task.error_summary = reason
            task.updated_at = utc_now()
            self._add_event(
                task_id=task_id,
                event_type="failure_recorded",
                status_from=task.status,
                status_to=task.status,
                details={
                    "failure_class": failure_class.value,
                    "reason": reason,
                    "attempt": task.attempts,
                },
            )
            return replace(task)

    def complete(self, task_id: str, *, result: Any = None) -> Task:
        with self._lock:
            task = self._require(task_id)
            self._apply_transition(task, TaskStatus.COMPLETED, details={})
            task.result = result
            return replace(task)

    def fail(self, task_id: str, *, failure_class: FailureClass, reason: str) -> Task:
        """Record the reason, then move the task to failed."""

        with self._lock:
            task = self._require(task_id)
            if task.status != TaskStatus.IN_PROGRESS:
                raise InvalidTransition(task_id, task.status, TaskStatus.FAILED)
            self.record_failure(task_id, failure_class=failure_class, reason=reason)
            self._apply_transition(
                task,
                TaskStatus.FAILED,
                details={"failure_class": failure_class.value, "reason": reason},
            )
            return replace(task)

    def add_event(
        self,
        task_id: str,
        event_type: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append an informational event (no status change) to a task's audit trail."""

        with self._lock:
            task = self._require(task_id)
            self._add_event(
                task_id=task_id,
                event_type=event_type,
                status_from=task.status,
                status_to=task.status,
                details=details or {},
            )

    def wait_for_change(self, *, since: int, timeout: float | None) -> int:
        """Block until the registry version moves past `since` or timeout elapses."""

        with self._changed:
            self._changed.wait_for(lambda: self._version != since, timeout=timeout)
            return self._version

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._tasks

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def _validate_dependencies(self, *, task_id: str, dependencies: tuple[str, ...]) -> None:
        if task_id in dependencies:
            raise InvalidDependency(f"Task {task_id!r} cannot depend on itself.")
        unknown = [dep for dep in dependencies if dep not in self._tasks]
        if unknown:
            raise InvalidDependency(f"Unknown dependency ids: {', '.join(unknown)}")
        if self._reaches(start=dependencies, target=task_id):
            raise InvalidDependency(
                f"Dependencies {list(dependencies)} would create a cycle through {task_id!r}.",
            )

    def _reaches(self, *, start: tuple[str, ...], target: str) -> bool:
        stack = list(start)
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            task = self._tasks.get(current)
            if task is not None:
                stack.extend(task.dependencies)
        return False

    def _is_eligible(self, task: Task) -> bool:
        if task.status != TaskStatus.PENDING:
            return False
        return all(self._tasks[dep].status == TaskStatus.COMPLETED for dep in task.dependencies)

    def _is_blocked(self, task_id: str, memo: dict[str, bool]) -> bool:
        if task_id in memo:
            return memo[task_id]
        memo[task_id] = False
        blocked = False
        for dep_id in self._tasks[task_id].dependencies:
            dep = self._tasks[dep_id]
            if dep.status == TaskStatus.FAILED or (
                dep.status == TaskStatus.PENDING and self._is_blocked(dep_id, memo)
            ):
                blocked = True
                break
        memo[task_id] = blocked
        return blocked

    def _apply_transition(
        self,
        task: Task,
        new_status: TaskStatus,
        *,
        details: dict[str, Any],
    ) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransition(task.task_id, task.status, new_status)
        previous = task.status
        now = utc_now()
        task.status = new_status
        task.updated_at = now
        if new_status == TaskStatus.IN_PROGRESS:
            task.started_at = now
        elif task.is_terminal:
            task.finished_at = now
        self._add_event(
            task_id=task.task_id,
            event_type=f"status_{new_status.value}",
            status_from=previous,
            status_to=new_status,
            details=details,
        )
        self._notify()

    def _set_assignment(self, task: Task, *, agent_id: str, provider: Provider | None) -> None:
        previous = task.assigned_agent_id
        task.assigned_agent_id = agent_id
        if provider is not None:
            task.provider = provider
        task.updated_at = utc_now()
        self._add_event(
            task_id=task.task_id,
            event_type="agent_assigned",
            status_from=task.status,
            status_to=task.status,
            details={
                "agent_id": agent_id,
                "previous_agent_id": previous,
                "provider": task.provider.value if task.provider else None,
            },
        )

    def _add_event(
        self,
        *,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, Any],
    ) -> None:
        self._events.append(
            TaskEvent(
                event_id=len(self._events) + 1,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                created_at=utc_now(),
                details=details,
            ),
        )

    def _notify(self) -> None:
        self._version += 1
        self._changed.notify_all()
