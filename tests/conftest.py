"""Shared test fixtures."""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence

import pytest

from swarm_dispatch.orchestrator.backend import EchoBackend
from swarm_dispatch.orchestrator.bidding import BiddingAllocator
from swarm_dispatch.orchestrator.chaos import FaultInjector
from swarm_dispatch.orchestrator.loop import OrchestrationLoop
from swarm_dispatch.orchestrator.models import OrgAgent
from swarm_dispatch.orchestrator.registry import TaskRegistry
from swarm_dispatch.orchestrator.roster import StaticRoster


class StubRandom(random.Random):
    """Random source replaying a fixed sequence of draws (last value repeats)."""

    def __init__(self, values: Sequence[float]) -> None:
        super().__init__(0)
        self.values = list(values)
        self.draws = 0

    def random(self) -> float:
        index = min(self.draws, len(self.values) - 1)
        self.draws += 1
        return self.values[index]

    def randint(self, a: int, b: int) -> int:
        return a


@pytest.fixture()
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture()
def stub_rng() -> Callable[..., StubRandom]:
    def _factory(*values: float) -> StubRandom:
        return StubRandom(values or (0.99,))

    return _factory


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def quiet_injector(sleeps) -> FaultInjector:
    """Injector that never fires on its own; scenario faults still apply."""

    return FaultInjector(
        latency_probability=0.0,
        tool_failure_probability=0.0,
        context_scramble_probability=0.0,
        latency_range_ms=(5, 5),
        rng=StubRandom((0.99,)),
        sleep=sleeps.append,
    )


@pytest.fixture()
def agents() -> list[OrgAgent]:
    return [
        OrgAgent(
            agent_id="researcher",
            role="analyst",
            skills=frozenset({"research", "writing"}),
            success_rate=80,
        ),
        OrgAgent(
            agent_id="engineer",
            role="developer",
            skills=frozenset({"coding"}),
            success_rate=90,
        ),
    ]


@pytest.fixture()
def make_loop(registry, quiet_injector, agents) -> Callable[..., OrchestrationLoop]:
    def _factory(
        *,
        backend=None,
        injector: FaultInjector | None = None,
        roster_agents: Sequence[OrgAgent] | None = None,
        **options,
    ) -> OrchestrationLoop:
        options.setdefault("poll_interval_seconds", 0.0)
        return OrchestrationLoop(
            registry=registry,
            allocator=BiddingAllocator(),
            fault_injector=injector or quiet_injector,
            roster=StaticRoster(agents if roster_agents is None else roster_agents),
            backend=backend or EchoBackend(),
            **options,
        )

    return _factory
