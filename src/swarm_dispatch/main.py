"""CLI entrypoint for swarm-dispatch."""

import logging
from pathlib import Path

import rich_click as click

from swarm_dispatch import __version__
from swarm_dispatch.orchestrator.controllers import (
    BidPreviewCommand,
    NegotiateCommand,
    OrchestratorCliController,
    RunPlanCommand,
)
from swarm_dispatch.orchestrator.loop import SCENARIO_FAULTS
from swarm_dispatch.orchestrator.models import TaskPriority

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="swarm-dispatch")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging verbosity.",
)
def swarm_dispatch(log_level: str) -> None:
    """Bid-based task allocation with fault injection."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@swarm_dispatch.command("run")
@click.option(
    "--plan",
    "plan_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON plan with tasks and dependencies.",
)
@click.option(
    "--roster",
    "roster_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON list of agents.",
)
@click.option(
    "--retry-limit",
    type=click.IntRange(min=0),
    default=None,
    help="Retries per task after the first attempt (overrides SWARM_DISPATCH_RETRY_LIMIT).",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for orchestration cycles.",
)
@click.option(
    "--chaos/--no-chaos",
    default=None,
    help="Enable or disable probabilistic fault injection.",
)
@click.option("--seed", type=int, default=None, help="Seed for the fault-injection RNG.")
@click.option(
    "--fault",
    "faults",
    type=click.Choice(list(SCENARIO_FAULTS)),
    multiple=True,
    help="Persistent scenario fault to enable. Can be repeated.",
)
@click.option(
    "--tool",
    "tools",
    multiple=True,
    help="Tool names the echo backend calls per attempt. Can be repeated.",
)
@click.option(
    "--fail-first",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Make the echo backend fail the first N attempts of every task.",
)
@click.option(
    "--no-sleep",
    is_flag=True,
    default=False,
    help="Record injected latency without actually sleeping.",
)
def run(  # noqa: PLR0913
    plan_path: Path,
    roster_path: Path,
    retry_limit: int | None,
    max_cycles: int | None,
    chaos: bool | None,
    seed: int | None,
    faults: tuple[str, ...],
    tools: tuple[str, ...],
    fail_first: int,
    no_sleep: bool,
) -> None:
    """Execute a plan with the echo backend until no task can be dispatched."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.run_plan(
            RunPlanCommand(
                plan_path=plan_path,
                roster_path=roster_path,
                retry_limit=retry_limit,
                max_cycles=max_cycles,
                chaos=chaos,
                seed=seed,
                faults=faults,
                tools=tools,
                fail_first=fail_first,
                no_sleep=no_sleep,
            ),
        ),
    )


@swarm_dispatch.command("bid")
@click.option(
    "--plan",
    "plan_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON plan with tasks and dependencies.",
)
@click.option(
    "--roster",
    "roster_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON list of agents.",
)
def bid(plan_path: Path, roster_path: Path) -> None:
    """Show the auction for every plan task without executing anything."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.preview_bids(
            BidPreviewCommand(plan_path=plan_path, roster_path=roster_path),
        ),
    )


@swarm_dispatch.command("providers")
@click.option(
    "--skill",
    "skills",
    multiple=True,
    help="Required skill tag. Can be repeated.",
)
@click.option(
    "--priority",
    type=click.Choice([priority.value for priority in TaskPriority], case_sensitive=False),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
    help="Task priority.",
)
def providers(skills: tuple[str, ...], priority: str) -> None:
    """Show which upstream provider a task with these traits is routed to."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.negotiate(
            NegotiateCommand(skills=skills, priority=priority.lower()),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    swarm_dispatch()
