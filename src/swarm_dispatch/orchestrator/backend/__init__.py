"""Execution backend implementations."""

from swarm_dispatch.orchestrator.backend.base import (
    ExecutionBackend,
    ExecutionRequest,
    ExecutionResult,
)
from swarm_dispatch.orchestrator.backend.echo_agent import EchoBackend

__all__ = [
    "EchoBackend",
    "ExecutionBackend",
    "ExecutionRequest",
    "ExecutionResult",
]
