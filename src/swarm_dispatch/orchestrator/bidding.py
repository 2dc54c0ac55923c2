"""Auction-based agent allocation and provider negotiation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from swarm_dispatch.config import BiddingSettings
from swarm_dispatch.orchestrator.models import Bid, OrgAgent, Provider, Task, TaskPriority

RELIABILITY_FIRST_SKILLS = frozenset({"coding"})
RELIABILITY_SECOND_SKILLS = frozenset({"research"})


@dataclass(slots=True)
class CostTable:
    """Per-provider unit costs plus the eta model used when bidding."""

    unit_costs: dict[Provider, float]
    bidding_tier: Provider = Provider.COST_OPTIMIZED
    fixed_overhead_minutes: int = 5
    per_skill_minutes: int = 2

    @classmethod
    def from_settings(cls, settings: BiddingSettings) -> CostTable:
        """Build validated cost table from bidding settings."""

        unit_costs: dict[Provider, float] = {}
        for tier, cost in settings.unit_costs.items():
            try:
                provider = Provider(tier)
            except ValueError as error:
                raise ValueError(f"Unknown provider tier in unit costs: {tier!r}") from error
            unit_costs[provider] = float(cost)
        missing = [provider.value for provider in Provider if provider not in unit_costs]
        if missing:
            raise ValueError(f"Missing unit cost for provider tiers: {', '.join(missing)}")
        return cls(
            unit_costs=unit_costs,
            bidding_tier=Provider(settings.bidding_tier),
            fixed_overhead_minutes=settings.fixed_overhead_minutes,
            per_skill_minutes=settings.per_skill_minutes,
        )

    @property
    def base_unit_cost(self) -> float:
        return self.unit_costs[self.bidding_tier]


class BiddingAllocator:
    """Runs one auction per task; stateless apart from the cost table."""

    def __init__(self, cost_table: CostTable | None = None) -> None:
        self.cost_table = cost_table or CostTable.from_settings(BiddingSettings())

    def conduct_bidding(self, task: Task, candidates: Iterable[OrgAgent]) -> list[Bid]:
        """Produce one bid per candidate sharing at least one required skill."""

        required = _normalize_skills(task.required_skills)
        skill_count = len(task.required_skills)
        cost_estimate = self.cost_table.base_unit_cost * (skill_count + 1)
        eta_minutes = (
            self.cost_table.fixed_overhead_minutes + self.cost_table.per_skill_minutes * skill_count
        )
        return [
            Bid(
                agent_id=agent.agent_id,
                score=agent.success_rate,
                cost_estimate=cost_estimate,
                eta_minutes=eta_minutes,
            )
            for agent in candidates
            if required & _normalize_skills(agent.skills)
        ]

    def determine_winner(self, bids: Iterable[Bid]) -> Bid | None:
        """Highest ROI wins; ties go to the cheaper bid, then to the earlier one."""

        best: Bid | None = None
        for bid in bids:
            if best is None or _beats(bid, best):
                best = bid
        return best

    def negotiate_provider(self, task: Task) -> Provider:
        """Select the upstream provider for a task from priority and skills."""

        skills = _normalize_skills(task.required_skills)
        if task.priority == TaskPriority.CRITICAL or skills & RELIABILITY_FIRST_SKILLS:
            return Provider.RELIABILITY_FIRST
        if skills & RELIABILITY_SECOND_SKILLS:
            return Provider.RELIABILITY_SECOND
        return Provider.COST_OPTIMIZED


def _beats(candidate: Bid, incumbent: Bid) -> bool:
    if candidate.roi != incumbent.roi:
        return candidate.roi > incumbent.roi
    return candidate.cost_estimate < incumbent.cost_estimate


def _normalize_skills(skills: Iterable[str]) -> frozenset[str]:
    return frozenset(skill.strip().lower() for skill in skills if skill.strip())
