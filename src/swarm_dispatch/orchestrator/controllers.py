"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, replace
from pathlib import Path

from swarm_dispatch.config import Settings
from swarm_dispatch.orchestrator.backend import EchoBackend
from swarm_dispatch.orchestrator.bidding import BiddingAllocator, CostTable
from swarm_dispatch.orchestrator.chaos import FaultInjector
from swarm_dispatch.orchestrator.loop import OrchestrationLoop
from swarm_dispatch.orchestrator.metrics import build_orchestrator_metrics, render_stats_lines
from swarm_dispatch.orchestrator.models import Task, TaskPriority, TaskStatus, utc_now
from swarm_dispatch.orchestrator.plan import apply_plan, read_plan
from swarm_dispatch.orchestrator.registry import TaskRegistry
from swarm_dispatch.orchestrator.roster import StaticRoster

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunPlanCommand:
    """CLI input for executing a plan against a roster with the echo backend."""

    plan_path: Path
    roster_path: Path
    retry_limit: int | None = None
    max_cycles: int | None = None
    chaos: bool | None = None
    seed: int | None = None
    faults: tuple[str, ...] = ()
    tools: tuple[str, ...] = ()
    fail_first: int = 0
    no_sleep: bool = False


@dataclass(slots=True)
class BidPreviewCommand:
    """CLI input for a dry-run auction over a plan."""

    plan_path: Path
    roster_path: Path


@dataclass(slots=True)
class NegotiateCommand:
    """CLI input for provider negotiation."""

    skills: tuple[str, ...]
    priority: str


class OrchestratorCliController:
    """Coordinates plan execution, auction previews and provider lookups."""

    def run_plan(self, command: RunPlanCommand) -> list[str]:
        settings = _settings_for(command)
        registry = TaskRegistry()
        created = apply_plan(registry, read_plan(command.plan_path))
        roster = StaticRoster.from_file(command.roster_path)
        logger.info(
            "Running plan %s: %d task(s), %d agent(s), chaos=%s",
            command.plan_path,
            len(created),
            len(roster.all_agents()),
            settings.chaos.enabled,
        )

        injector = FaultInjector.from_settings(
            settings.chaos,
            rng=random.Random(settings.chaos.seed),  # noqa: S311
            sleep=(lambda _: None) if command.no_sleep else time.sleep,
        )
        for fault_id in command.faults:
            injector.enable_fault(fault_id)

        backend = (
            EchoBackend(tools=command.tools, fail_first=command.fail_first)
            if command.tools
            else EchoBackend(fail_first=command.fail_first)
        )
        loop = OrchestrationLoop(
            registry=registry,
            allocator=BiddingAllocator(CostTable.from_settings(settings.bidding)),
            fault_injector=injector,
            roster=roster,
            backend=backend,
            retry_limit=settings.orchestrator.retry_limit,
            max_concurrent_tasks=settings.orchestrator.max_concurrent_tasks,
            poll_interval_seconds=0.0,
            strict_transitions=settings.orchestrator.strict_transitions,
        )
        started = utc_now()
        summary = loop.run_loop(max_cycles=command.max_cycles, max_idle_cycles=1)
        elapsed = (utc_now() - started).total_seconds()

        lines = [
            "Run summary: "
            f"dispatched={summary.dispatched} completed={summary.completed} "
            f"failed={summary.failed} retried={summary.retried} "
            f"unallocated={summary.unallocated} chaos_faults={summary.chaos_faults} "
            f"elapsed={elapsed:.2f}s",
        ]
        for key, task in created.items():
            current = registry.get(task.task_id) or task
            lines.append(_format_task_line(key=key, task=current))
        snapshot = build_orchestrator_metrics(
            tasks=registry.list_tasks(),
            events=registry.list_events(),
            stuck=registry.list_stuck(),
        )
        lines.extend(render_stats_lines(snapshot))
        return lines

    def preview_bids(self, command: BidPreviewCommand) -> list[str]:
        settings = Settings.from_env()
        allocator = BiddingAllocator(CostTable.from_settings(settings.bidding))
        registry = TaskRegistry()
        created = apply_plan(registry, read_plan(command.plan_path))
        roster = StaticRoster.from_file(command.roster_path)

        lines: list[str] = []
        for key, task in created.items():
            bids = allocator.conduct_bidding(task, roster.find_agents(task.required_skills))
            winner = allocator.determine_winner(bids)
            provider = allocator.negotiate_provider(task)
            lines.append(
                f"[{key}] {task.title} priority={task.priority.value} "
                f"provider={provider.value} winner={winner.agent_id if winner else '-'}",
            )
            if not bids:
                lines.append("  no eligible agent (task stays pending)")
            for bid in bids:
                lines.append(
                    f"  bid agent={bid.agent_id} score={bid.score:g} "
                    f"cost={bid.cost_estimate:g} eta={bid.eta_minutes}m roi={bid.roi:.2f}",
                )
        return lines

    def negotiate(self, command: NegotiateCommand) -> list[str]:
        allocator = BiddingAllocator(CostTable.from_settings(Settings.from_env().bidding))
        now = utc_now()
        probe = Task(
            task_id="probe",
            title="probe",
            description="",
            required_skills=frozenset(command.skills),
            dependencies=(),
            priority=TaskPriority(command.priority),
            status=TaskStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        provider = allocator.negotiate_provider(probe)
        return [
            f"Provider: {provider.value} "
            f"(priority={command.priority} skills={','.join(command.skills) or '-'})",
        ]


def _settings_for(command: RunPlanCommand) -> Settings:
    settings = Settings.from_env()
    orchestrator = settings.orchestrator
    if command.retry_limit is not None:
        orchestrator = replace(orchestrator, retry_limit=command.retry_limit)
    chaos = settings.chaos
    if command.chaos is not None:
        chaos = replace(chaos, enabled=command.chaos)
    if command.seed is not None:
        chaos = replace(chaos, seed=command.seed)
    settings = replace(settings, orchestrator=orchestrator, chaos=chaos)
    settings.validate()
    return settings


def _format_task_line(*, key: str, task: Task) -> str:
    line = (
        f"[{key}] {task.title}: status={task.status.value} "
        f"agent={task.assigned_agent_id or '-'} "
        f"provider={task.provider.value if task.provider else '-'} attempts={task.attempts}"
    )
    if task.error_summary:
        line += f" last_error={task.error_summary!r}"
    return line
