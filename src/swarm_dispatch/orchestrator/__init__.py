"""Task orchestration core: registry, bidding allocator, fault injection, loop.

Tasks enter through `TaskRegistry.create_task`; the `OrchestrationLoop`
repeatedly offers every eligible task (pending, all dependencies completed)
one auction run by `BiddingAllocator`, claims it for the winning agent and
hands it to an `ExecutionBackend`. `FaultInjector` is consulted before every
dispatch (latency), around every tool call (tool faults) and on the context
passed to the backend (history loss). Priority picks the upstream provider;
it never reorders the eligible queue.
"""

from swarm_dispatch.orchestrator.bidding import BiddingAllocator, CostTable
from swarm_dispatch.orchestrator.chaos import FaultInjector
from swarm_dispatch.orchestrator.errors import (
    ChaosFault,
    ExecutionFailure,
    InvalidDependency,
    InvalidTransition,
    SwarmDispatchError,
    TaskNotFound,
)
from swarm_dispatch.orchestrator.loop import CycleSummary, OrchestrationLoop
from swarm_dispatch.orchestrator.models import (
    Bid,
    FailureClass,
    OrgAgent,
    Provider,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
)
from swarm_dispatch.orchestrator.registry import TaskRegistry
from swarm_dispatch.orchestrator.roster import AgentRoster, StaticRoster

__all__ = [
    "AgentRoster",
    "Bid",
    "BiddingAllocator",
    "ChaosFault",
    "CostTable",
    "CycleSummary",
    "ExecutionFailure",
    "FailureClass",
    "FaultInjector",
    "InvalidDependency",
    "InvalidTransition",
    "OrchestrationLoop",
    "OrgAgent",
    "Provider",
    "StaticRoster",
    "SwarmDispatchError",
    "Task",
    "TaskCreate",
    "TaskNotFound",
    "TaskPriority",
    "TaskRegistry",
    "TaskStatus",
]
