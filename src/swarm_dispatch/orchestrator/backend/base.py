"""Backend interface for task execution collaborators."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from swarm_dispatch.orchestrator.models import Provider, Task


@dataclass(slots=True)
class ExecutionRequest:
    """Inputs required to execute one task attempt.

    `intercept_tool` must be called with the tool name before every tool
    invocation; it raises `ChaosFault` when the call is to be treated as failed.
    """

    task: Task
    agent_id: str
    provider: Provider
    context: Mapping[str, Any]
    intercept_tool: Callable[[str], None]
    attempt: int = 1


@dataclass(slots=True)
class ExecutionResult:
    """Success payload returned by the collaborator."""

    output: Any
    tools_used: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


class ExecutionBackend(Protocol):
    """Protocol implemented by execution collaborators."""

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one attempt; raise `ExecutionFailure` (or `ChaosFault`) on failure."""
