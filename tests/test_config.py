from __future__ import annotations

import allure
import pytest

from swarm_dispatch.config import (
    DEFAULT_UNIT_COSTS,
    BiddingSettings,
    ChaosSettings,
    OrchestratorSettings,
    Settings,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Configuration"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "SWARM_DISPATCH_RETRY_LIMIT",
        "SWARM_DISPATCH_UNIT_COSTS",
        "SWARM_DISPATCH_BIDDING_TIER",
        "SWARM_DISPATCH_CHAOS_ENABLED",
        "SWARM_DISPATCH_CHAOS_SEED",
        "SWARM_DISPATCH_CHAOS_LATENCY_PROBABILITY",
        "SWARM_DISPATCH_STRICT_TRANSITIONS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.orchestrator.retry_limit == 2
    assert settings.orchestrator.strict_transitions is False
    assert settings.bidding.unit_costs == DEFAULT_UNIT_COSTS
    assert settings.bidding.bidding_tier == "cost_optimized"
    assert settings.chaos.enabled is True
    assert settings.chaos.latency_probability == 0.30
    assert settings.chaos.tool_failure_probability == 0.10
    assert settings.chaos.context_scramble_probability == 0.05
    assert (settings.chaos.latency_min_ms, settings.chaos.latency_max_ms) == (500, 2000)
    assert settings.chaos.seed is None


def test_from_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SWARM_DISPATCH_RETRY_LIMIT", "5")
    monkeypatch.setenv("SWARM_DISPATCH_UNIT_COSTS", "reliability_first:4.5, cost_optimized:0.5")
    monkeypatch.setenv("SWARM_DISPATCH_CHAOS_ENABLED", "off")
    monkeypatch.setenv("SWARM_DISPATCH_CHAOS_SEED", "42")
    monkeypatch.setenv("SWARM_DISPATCH_STRICT_TRANSITIONS", "yes")

    settings = Settings.from_env()

    assert settings.orchestrator.retry_limit == 5
    assert settings.orchestrator.strict_transitions is True
    assert settings.bidding.unit_costs == {
        "reliability_first": 4.5,
        "reliability_second": 10.0,
        "cost_optimized": 0.5,
    }
    assert settings.chaos.enabled is False
    assert settings.chaos.seed == 42


def test_from_env_rejects_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("SWARM_DISPATCH_CHAOS_ENABLED", "maybe")

    with pytest.raises(ValueError, match="SWARM_DISPATCH_CHAOS_ENABLED"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("reliability_first", "Expected format"),
        ("cost_optimized:cheap", "Invalid SWARM_DISPATCH_UNIT_COSTS value"),
    ],
)
def test_from_env_rejects_malformed_unit_costs(monkeypatch, raw, message) -> None:
    monkeypatch.setenv("SWARM_DISPATCH_UNIT_COSTS", raw)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_from_env_rejects_out_of_range_probability(monkeypatch) -> None:
    monkeypatch.setenv("SWARM_DISPATCH_CHAOS_LATENCY_PROBABILITY", "1.5")

    with pytest.raises(ValueError, match="LATENCY_PROBABILITY"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(orchestrator=OrchestratorSettings(retry_limit=-1)), "RETRY_LIMIT"),
        (
            Settings(orchestrator=OrchestratorSettings(max_concurrent_tasks=0)),
            "MAX_CONCURRENT_TASKS",
        ),
        (Settings(bidding=BiddingSettings(bidding_tier="platinum")), "BIDDING_TIER"),
        (
            Settings(
                bidding=BiddingSettings(unit_costs={**DEFAULT_UNIT_COSTS, "cost_optimized": -1}),
            ),
            "must be >= 0",
        ),
        (Settings(chaos=ChaosSettings(latency_min_ms=10, latency_max_ms=5)), "LATENCY_MIN_MS"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
