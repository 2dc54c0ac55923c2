"""Runtime configuration for task allocation, execution and fault injection."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_UNIT_COSTS: dict[str, float] = {
    "reliability_first": 3.0,
    "reliability_second": 10.0,
    "cost_optimized": 1.0,
}


@dataclass(slots=True)
class OrchestratorSettings:
    """Loop cadence, concurrency and retry policy."""

    retry_limit: int = 2
    max_concurrent_tasks: int = 4
    poll_interval_seconds: float = 2.0
    strict_transitions: bool = False


@dataclass(slots=True)
class BiddingSettings:
    """Cost table consumed by the bidding allocator."""

    unit_costs: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_UNIT_COSTS))
    bidding_tier: str = "cost_optimized"
    fixed_overhead_minutes: int = 5
    per_skill_minutes: int = 2


@dataclass(slots=True)
class ChaosSettings:
    """Fault injection probabilities and latency range."""

    enabled: bool = True
    latency_probability: float = 0.30
    tool_failure_probability: float = 0.10
    context_scramble_probability: float = 0.05
    latency_min_ms: int = 500
    latency_max_ms: int = 2000
    seed: int | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    bidding: BiddingSettings = field(default_factory=BiddingSettings)
    chaos: ChaosSettings = field(default_factory=ChaosSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        seed_raw = os.getenv("SWARM_DISPATCH_CHAOS_SEED", "").strip()
        settings = cls(
            orchestrator=OrchestratorSettings(
                retry_limit=int(os.getenv("SWARM_DISPATCH_RETRY_LIMIT", "2")),
                max_concurrent_tasks=int(os.getenv("SWARM_DISPATCH_MAX_CONCURRENT_TASKS", "4")),
                poll_interval_seconds=float(
                    os.getenv("SWARM_DISPATCH_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                strict_transitions=_env_bool("SWARM_DISPATCH_STRICT_TRANSITIONS", default=False),
            ),
            bidding=BiddingSettings(
                unit_costs=_collect_unit_costs(),
                bidding_tier=os.getenv("SWARM_DISPATCH_BIDDING_TIER", "cost_optimized").strip(),
                fixed_overhead_minutes=int(
                    os.getenv("SWARM_DISPATCH_BID_FIXED_OVERHEAD_MINUTES", "5"),
                ),
                per_skill_minutes=int(os.getenv("SWARM_DISPATCH_BID_PER_SKILL_MINUTES", "2")),
            ),
            chaos=ChaosSettings(
                enabled=_env_bool("SWARM_DISPATCH_CHAOS_ENABLED", default=True),
                latency_probability=float(
                    os.getenv("SWARM_DISPATCH_CHAOS_LATENCY_PROBABILITY", "0.30"),
                ),
                tool_failure_probability=float(
                    os.getenv("SWARM_DISPATCH_CHAOS_TOOL_FAILURE_PROBABILITY", "0.10"),
                ),
                context_scramble_probability=float(
                    os.getenv("SWARM_DISPATCH_CHAOS_CONTEXT_SCRAMBLE_PROBABILITY", "0.05"),
                ),
                latency_min_ms=int(os.getenv("SWARM_DISPATCH_CHAOS_LATENCY_MIN_MS", "500")),
                latency_max_ms=int(os.getenv("SWARM_DISPATCH_CHAOS_LATENCY_MAX_MS", "2000")),
                seed=int(seed_raw) if seed_raw else None,
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.orchestrator.retry_limit < 0:
            raise ValueError("SWARM_DISPATCH_RETRY_LIMIT must be >= 0.")
        if self.orchestrator.max_concurrent_tasks <= 0:
            raise ValueError("SWARM_DISPATCH_MAX_CONCURRENT_TASKS must be > 0.")
        if self.orchestrator.poll_interval_seconds < 0:
            raise ValueError("SWARM_DISPATCH_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.bidding.bidding_tier not in self.bidding.unit_costs:
            raise ValueError(
                f"SWARM_DISPATCH_BIDDING_TIER {self.bidding.bidding_tier!r} "
                "has no configured unit cost.",
            )
        for tier, cost in self.bidding.unit_costs.items():
            if cost < 0:
                raise ValueError(f"Unit cost for tier {tier!r} must be >= 0, got {cost!r}.")
        for name, probability in (
            ("LATENCY_PROBABILITY", self.chaos.latency_probability),
            ("TOOL_FAILURE_PROBABILITY", self.chaos.tool_failure_probability),
            ("CONTEXT_SCRAMBLE_PROBABILITY", self.chaos.context_scramble_probability),
        ):
            if not 0.0 <= probability <= 1.0:
                raise ValueError(f"SWARM_DISPATCH_CHAOS_{name} must be within [0, 1].")
        if self.chaos.latency_min_ms < 0 or self.chaos.latency_max_ms < self.chaos.latency_min_ms:
            raise ValueError(
                "SWARM_DISPATCH_CHAOS_LATENCY_MIN_MS/MAX_MS must satisfy 0 <= min <= max.",
            )


def _collect_unit_costs() -> dict[str, float]:
    """Parse `SWARM_DISPATCH_UNIT_COSTS` overrides.

    Format: `tier:cost` entries separated by `,`, for example
    `reliability_first:3.5,cost_optimized:0.8`. Unlisted tiers keep defaults.
    """

    costs = dict(DEFAULT_UNIT_COSTS)
    raw = os.getenv("SWARM_DISPATCH_UNIT_COSTS", "").strip()
    if not raw:
        return costs

    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if ":" not in token:
            raise ValueError(
                "Invalid SWARM_DISPATCH_UNIT_COSTS entry: "
                f"{token!r}. Expected format '<tier>:<cost>'.",
            )
        tier, cost_raw = token.rsplit(":", 1)
        try:
            costs[tier.strip()] = float(cost_raw.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid SWARM_DISPATCH_UNIT_COSTS value for {tier.strip()!r}: {cost_raw!r}",
            ) from error
    return costs


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
