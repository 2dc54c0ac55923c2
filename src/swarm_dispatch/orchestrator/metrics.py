"""Observability snapshot for registry state and execution history."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from swarm_dispatch.orchestrator.models import FailureClass, Task, TaskEvent, TaskStatus

_CHAOS_EVENT_TYPES = ("chaos_latency_injected", "chaos_context_scrambled")


@dataclass(slots=True)
class OrchestratorMetricsSnapshot:
    """Aggregated metrics used by the run/stats CLI output."""

    task_count: int
    status_counts: dict[str, int]
    pending_priority_counts: dict[str, int]
    failure_class_counts: dict[str, int]
    chaos_event_counts: dict[str, int]
    attempt_total: int
    retried_total: int
    stuck_task_ids: list[str]
    agent_completion_counts: dict[str, int]

    @property
    def completion_rate(self) -> float | None:
        terminal = self.status_counts.get(TaskStatus.COMPLETED.value, 0) + self.status_counts.get(
            TaskStatus.FAILED.value,
            0,
        )
        if terminal == 0:
            return None
        return self.status_counts.get(TaskStatus.COMPLETED.value, 0) / terminal


def build_orchestrator_metrics(
    *,
    tasks: list[Task],
    events: list[TaskEvent],
    stuck: list[Task],
) -> OrchestratorMetricsSnapshot:
    """Build one metrics snapshot from task/event views."""

    status_counts = Counter[str]()
    pending_priority_counts = Counter[str]()
    failure_class_counts = Counter[str]()
    agent_completion_counts = Counter[str]()
    attempt_total = 0

    for task in tasks:
        status_counts[task.status.value] += 1
        attempt_total += task.attempts
        if task.status == TaskStatus.PENDING:
            pending_priority_counts[task.priority.value] += 1
        if task.status == TaskStatus.FAILED and task.failure_class is not None:
            failure_class_counts[task.failure_class.value] += 1
        if task.status == TaskStatus.COMPLETED and task.assigned_agent_id:
            agent_completion_counts[task.assigned_agent_id] += 1

    chaos_event_counts = Counter[str]()
    retried_total = 0
    for event in events:
        if event.event_type in _CHAOS_EVENT_TYPES:
            chaos_event_counts[event.event_type] += 1
        elif event.event_type == "failure_recorded":
            if event.details.get("failure_class") == FailureClass.CHAOS_FAULT.value:
                chaos_event_counts["chaos_tool_fault"] += 1
        elif event.event_type == "retry_scheduled":
            retried_total += 1

    return OrchestratorMetricsSnapshot(
        task_count=len(tasks),
        status_counts=dict(status_counts),
        pending_priority_counts=dict(pending_priority_counts),
        failure_class_counts=dict(failure_class_counts),
        chaos_event_counts=dict(chaos_event_counts),
        attempt_total=attempt_total,
        retried_total=retried_total,
        stuck_task_ids=[task.task_id for task in stuck],
        agent_completion_counts=dict(agent_completion_counts),
    )


def render_stats_lines(snapshot: OrchestratorMetricsSnapshot) -> list[str]:
    """Render operator-facing summary lines."""

    status_part = " ".join(
        f"{status.value}={snapshot.status_counts.get(status.value, 0)}" for status in TaskStatus
    )
    lines = [
        f"Tasks: total={snapshot.task_count} {status_part}",
        f"Attempts: total={snapshot.attempt_total} retried={snapshot.retried_total}",
    ]
    if snapshot.completion_rate is not None:
        lines.append(f"Completion rate: {snapshot.completion_rate:.1%}")
    if snapshot.pending_priority_counts:
        lines.append("Pending by priority: " + _render_counts(snapshot.pending_priority_counts))
    if snapshot.failure_class_counts:
        lines.append("Failures by class: " + _render_counts(snapshot.failure_class_counts))
    if snapshot.chaos_event_counts:
        lines.append("Chaos events: " + _render_counts(snapshot.chaos_event_counts))
    if snapshot.agent_completion_counts:
        lines.append("Completed by agent: " + _render_counts(snapshot.agent_completion_counts))
    if snapshot.stuck_task_ids:
        lines.append(
            f"Stuck tasks (failed upstream): {len(snapshot.stuck_task_ids)} "
            f"[{', '.join(snapshot.stuck_task_ids)}]",
        )
    return lines


def _render_counts(counts: dict[str, int]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(counts.items()))
