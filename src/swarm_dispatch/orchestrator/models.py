"""Domain models for task registry, bidding and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskPriority(str, Enum):
    """Task priority. Drives provider negotiation, never queue order."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Provider(str, Enum):
    """Upstream execution backends selectable by negotiation."""

    RELIABILITY_FIRST = "reliability_first"
    RELIABILITY_SECOND = "reliability_second"
    COST_OPTIMIZED = "cost_optimized"


class FailureClass(str, Enum):
    """Normalized failure classes recorded on tasks."""

    CHAOS_FAULT = "chaos_fault"
    EXECUTION_FAILURE = "execution_failure"
    UNEXPECTED_ERROR = "unexpected_error"
    CANCELED = "canceled"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    title: str
    description: str = ""
    required_skills: frozenset[str] = frozenset()
    dependencies: tuple[str, ...] = ()
    priority: TaskPriority = TaskPriority.MEDIUM


@dataclass(slots=True)
class Task:
    """Unit of schedulable work. Instances handed out by the registry are snapshots."""

    task_id: str
    title: str
    description: str
    required_skills: frozenset[str]
    dependencies: tuple[str, ...]
    priority: TaskPriority
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    assigned_agent_id: str | None = None
    provider: Provider | None = None
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failure_class: FailureClass | None = None
    error_summary: str | None = None
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True, frozen=True)
class OrgAgent:
    """Candidate worker supplied by the roster. Read-only."""

    agent_id: str
    role: str
    skills: frozenset[str]
    success_rate: float


@dataclass(slots=True, frozen=True)
class Bid:
    """One agent's candidacy for one task during an allocation round."""

    agent_id: str
    score: float
    cost_estimate: float
    eta_minutes: int

    @property
    def roi(self) -> float:
        """Value delivered per unit of cost."""

        return self.score / max(self.cost_estimate, 1)


@dataclass(slots=True)
class TaskEvent:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
