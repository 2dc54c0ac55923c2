"""Probabilistic fault injection for resilience testing of the execution path."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from swarm_dispatch.config import ChaosSettings
from swarm_dispatch.orchestrator.errors import ChaosFault

logger = logging.getLogger(__name__)

CONTEXT_HISTORY_KEY = "history"


class FaultInjector:
    """Degrades execution at three fixed points: latency, tool calls and context.

    Each gate draws independently from the injected random source, so one
    execution can hit any combination of faults. The persistent fault set is
    plain membership; callers decide what an enabled id means.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        latency_probability: float = 0.30,
        tool_failure_probability: float = 0.10,
        context_scramble_probability: float = 0.05,
        latency_range_ms: tuple[int, int] = (500, 2000),
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        low, high = latency_range_ms
        if low < 0 or high < low:
            raise ValueError(f"Invalid latency range: {latency_range_ms!r}")
        self.latency_probability = latency_probability
        self.tool_failure_probability = tool_failure_probability
        self.context_scramble_probability = context_scramble_probability
        self.latency_range_ms = (low, high)
        self._rng = rng or random.Random()  # noqa: S311
        self._sleep = sleep
        self._lock = threading.Lock()
        self._active_faults: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: ChaosSettings,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> FaultInjector:
        """Build an injector; a disabled chaos mode zeroes every probability."""

        enabled = settings.enabled
        return cls(
            latency_probability=settings.latency_probability if enabled else 0.0,
            tool_failure_probability=settings.tool_failure_probability if enabled else 0.0,
            context_scramble_probability=(
                settings.context_scramble_probability if enabled else 0.0
            ),
            latency_range_ms=(settings.latency_min_ms, settings.latency_max_ms),
            rng=rng or random.Random(settings.seed),  # noqa: S311
            sleep=sleep,
        )

    def apply_latency(self, *, force: bool = False) -> int:
        """Maybe sleep; return the injected delay in milliseconds (0 if none)."""

        if not (force or self._draw() < self.latency_probability):
            return 0
        low, high = self.latency_range_ms
        with self._lock:
            delay_ms = self._rng.randint(low, high)
        logger.warning("Injecting %dms latency", delay_ms)
        self._sleep(delay_ms / 1000)
        return delay_ms

    def intercept_tool(self, tool_name: str, *, force: bool = False) -> None:
        """Raise `ChaosFault` for this tool invocation with the configured probability."""

        if force or self._draw() < self.tool_failure_probability:
            logger.warning("Injecting failure for tool: %s", tool_name)
            raise ChaosFault(tool_name)

    def scramble_context(
        self,
        context: Mapping[str, Any],
        *,
        force: bool = False,
    ) -> Mapping[str, Any]:
        """Return a copy with history wiped, or the input object unchanged."""

        if not (force or self._draw() < self.context_scramble_probability):
            return context
        logger.warning("Scrambling context history")
        scrambled = dict(context)
        scrambled[CONTEXT_HISTORY_KEY] = []
        return scrambled

    def enable_fault(self, fault_id: str) -> None:
        with self._lock:
            self._active_faults.add(fault_id)
        logger.warning("Persistent fault enabled: %s", fault_id)

    def disable_fault(self, fault_id: str) -> None:
        with self._lock:
            self._active_faults.discard(fault_id)
        logger.info("Persistent fault disabled: %s", fault_id)

    def clear_faults(self) -> None:
        with self._lock:
            self._active_faults.clear()
        logger.info("All persistent faults disabled")

    def is_enabled(self, fault_id: str) -> bool:
        with self._lock:
            return fault_id in self._active_faults

    def active_faults(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._active_faults)

    def _draw(self) -> float:
        # random.Random is not documented as thread-safe for shared use.
        with self._lock:
            return self._rng.random()
