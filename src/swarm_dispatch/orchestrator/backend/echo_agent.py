"""Local demo backend for loop integration tests and CLI dry runs."""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Sequence

from swarm_dispatch.orchestrator.backend.base import ExecutionRequest, ExecutionResult
from swarm_dispatch.orchestrator.errors import ExecutionFailure

DEFAULT_TOOLS = ("plan", "act")


class EchoBackend:
    """Deterministic backend that "calls" a fixed tool list and echoes the task.

    `fail_first` makes the first N attempts of every task raise
    `ExecutionFailure`; `always_fail` makes every attempt fail.
    """

    def __init__(
        self,
        *,
        tools: Sequence[str] = DEFAULT_TOOLS,
        fail_first: int = 0,
        always_fail: bool = False,
        failure_reason: str = "echo backend scripted failure",
    ) -> None:
        self.tools = tuple(tools)
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.failure_reason = failure_reason
        self.requests: list[ExecutionRequest] = []
        self._calls: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        with self._lock:
            self.requests.append(request)
            self._calls[request.task.task_id] += 1
            call_no = self._calls[request.task.task_id]

        for tool_name in self.tools:
            request.intercept_tool(tool_name)

        if self.always_fail or call_no <= self.fail_first:
            raise ExecutionFailure(f"{self.failure_reason} (call {call_no})")

        text = request.task.description.strip() or request.task.title
        return ExecutionResult(
            output=text,
            tools_used=self.tools,
            metadata={
                "backend": "echo_agent",
                "agent_id": request.agent_id,
                "provider": request.provider.value,
                "history_size": len(request.context.get("history", [])),
            },
        )

    def calls_for(self, task_id: str) -> int:
        with self._lock:
            return self._calls[task_id]
