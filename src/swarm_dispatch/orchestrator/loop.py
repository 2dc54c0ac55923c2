"""Orchestration loop: poll eligible tasks, auction them, execute under fault injection."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any

from swarm_dispatch.orchestrator.backend import ExecutionBackend, ExecutionRequest, ExecutionResult
from swarm_dispatch.orchestrator.bidding import BiddingAllocator
from swarm_dispatch.orchestrator.chaos import CONTEXT_HISTORY_KEY, FaultInjector
from swarm_dispatch.orchestrator.errors import (
    ChaosFault,
    ExecutionFailure,
    InvalidTransition,
    TaskNotFound,
)
from swarm_dispatch.orchestrator.models import FailureClass, Provider, Task, TaskStatus
from swarm_dispatch.orchestrator.registry import TaskRegistry
from swarm_dispatch.orchestrator.roster import AgentRoster

logger = logging.getLogger(__name__)

FORCED_TOOL_FAILURE = "forced_tool_failure"
FORCED_LATENCY = "forced_latency"
FORCED_CONTEXT_LOSS = "forced_context_loss"
SCENARIO_FAULTS = (FORCED_TOOL_FAILURE, FORCED_LATENCY, FORCED_CONTEXT_LOSS)


@dataclass(slots=True)
class CycleSummary:
    """Aggregate loop counters for CLI reporting."""

    eligible: int = 0
    dispatched: int = 0
    deferred: int = 0
    unallocated: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    chaos_faults: int = 0
    idle_cycles: int = 0

    def merge(self, other: CycleSummary) -> None:
        for item in fields(self):
            setattr(self, item.name, getattr(self, item.name) + getattr(other, item.name))


@dataclass(slots=True)
class _Attempt:
    ok: bool
    result: ExecutionResult | None = None
    failure_class: FailureClass | None = None
    reason: str | None = None
    retryable: bool = False


class OrchestrationLoop:
    """Drives the poll, allocate, execute and record cycle."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: TaskRegistry,
        allocator: BiddingAllocator,
        fault_injector: FaultInjector,
        roster: AgentRoster,
        backend: ExecutionBackend,
        retry_limit: int = 2,
        max_concurrent_tasks: int = 4,
        poll_interval_seconds: float = 2.0,
        strict_transitions: bool = False,
    ) -> None:
        if retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        if max_concurrent_tasks <= 0:
            raise ValueError("max_concurrent_tasks must be > 0")
        self.registry = registry
        self.allocator = allocator
        self.fault_injector = fault_injector
        self.roster = roster
        self.backend = backend
        self.retry_limit = retry_limit
        self.max_concurrent_tasks = max_concurrent_tasks
        self.poll_interval_seconds = poll_interval_seconds
        self.strict_transitions = strict_transitions
        self._lock = threading.Lock()
        self._running: set[str] = set()
        self._cancel_requests: dict[str, str] = {}
        self._committing: set[str] = set()
        self._stop_requested = False

    def run_once(self) -> CycleSummary:
        """Offer every eligible task one bidding round and wait for dispatched work."""

        summary = CycleSummary()
        eligible = self.registry.list_eligible()
        summary.eligible = len(eligible)
        if not eligible:
            summary.idle_cycles = 1
            return summary

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent_tasks,
            thread_name_prefix="swarm-dispatch",
        ) as pool:
            futures = []
            for task in eligible:
                if summary.dispatched >= self.max_concurrent_tasks:
                    summary.deferred += 1
                    continue
                try:
                    claimed = self._allocate(task)
                except InvalidTransition as error:
                    self._on_invalid_transition(error)
                    continue
                except Exception:  # noqa: BLE001
                    logger.exception("Allocation failed for task %s", task.task_id)
                    continue
                if claimed is None:
                    summary.unallocated += 1
                    continue
                summary.dispatched += 1
                futures.append(pool.submit(self._execute_task, claimed))

            for future in futures:
                summary.merge(future.result())

        if summary.dispatched == 0:
            summary.idle_cycles = 1
        return summary

    def run_loop(
        self,
        *,
        max_cycles: int | None = None,
        max_idle_cycles: int = 1,
    ) -> CycleSummary:
        """Run cycles until idle or max_cycles reached.

        Args:
            max_cycles: Stop after this many cycles (None = unlimited).
            max_idle_cycles: How many consecutive cycles without a dispatch
                before exiting. Between idle cycles the loop sleeps until the
                registry changes or the poll interval elapses.
        """

        aggregate = CycleSummary()
        cycles = 0
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_cycles is not None and cycles >= max_cycles:
                    return aggregate

                version = self.registry.version
                summary = self.run_once()
                cycles += 1
                aggregate.merge(summary)

                if summary.dispatched == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_cycles:
                        return aggregate
                    self._wait_for_work(since=version)
                    continue
                consecutive_idle = 0

    def cancel(self, task_id: str, *, reason: str = "canceled by operator") -> None:
        """Fail an in-progress task with `FailureClass.CANCELED`.

        A task currently executing on this loop is failed at its next
        checkpoint (before an attempt, or before its outcome is committed).
        Once the outcome is being committed the cancel is rejected with
        `InvalidTransition`.
        """

        task = self.registry.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.status != TaskStatus.IN_PROGRESS:
            raise InvalidTransition(task_id, task.status, TaskStatus.FAILED)
        with self._lock:
            if task_id in self._committing:
                raise InvalidTransition(task_id, task.status, TaskStatus.FAILED)
            if task_id in self._running:
                self._cancel_requests[task_id] = reason
                logger.info("Cancel requested for running task %s: %s", task_id, reason)
                return
        self.registry.fail(task_id, failure_class=FailureClass.CANCELED, reason=reason)
        logger.info("Canceled idle in-progress task %s: %s", task_id, reason)

    def request_stop(self) -> None:
        self._stop_requested = True

    def _allocate(self, task: Task) -> Task | None:
        winner_id = self._auction(task)
        if winner_id is None:
            logger.debug("No eligible agent bid for task %s; leaving it pending", task.task_id)
            return None
        provider = self.allocator.negotiate_provider(task)
        # Registered as running before the claim so a concurrent cancel waits for a checkpoint.
        with self._lock:
            self._running.add(task.task_id)
        try:
            claimed = self.registry.claim(task.task_id, agent_id=winner_id, provider=provider)
        except Exception:
            self._release(task.task_id)
            raise
        logger.info(
            "Task %s (%s) allocated to %s via %s",
            task.task_id,
            task.title,
            winner_id,
            provider.value,
        )
        return claimed

    def _auction(self, task: Task) -> str | None:
        candidates = self.roster.find_agents(task.required_skills)
        bids = self.allocator.conduct_bidding(task, candidates)
        winner = self.allocator.determine_winner(bids)
        return winner.agent_id if winner is not None else None

    def _execute_task(self, task: Task) -> CycleSummary:
        summary = CycleSummary()
        task_id = task.task_id
        agent_id = task.assigned_agent_id or ""
        provider = task.provider or self.allocator.negotiate_provider(task)
        history: list[str] = []
        with self._tracking(task_id):
            try:
                while True:
                    if self._commit_cancel(task_id, summary):
                        return summary
                    attempt_no = self.registry.start_attempt(task_id)
                    attempt = self._run_attempt(
                        task_id=task_id,
                        agent_id=agent_id,
                        provider=provider,
                        attempt_no=attempt_no,
                        history=history,
                    )
                    if attempt.ok:
                        if self._commit_cancel(task_id, summary, final=True):
                            return summary
                        output = attempt.result.output if attempt.result else None
                        self.registry.complete(task_id, result=output)
                        summary.completed = 1
                        logger.info("Task %s completed on attempt %d", task_id, attempt_no)
                        return summary

                    failure_class = attempt.failure_class or FailureClass.UNEXPECTED_ERROR
                    reason = attempt.reason or "unknown failure"
                    if failure_class == FailureClass.CHAOS_FAULT:
                        summary.chaos_faults += 1
                    history.append(reason)
                    if attempt.retryable and attempt_no <= self.retry_limit:
                        self.registry.record_failure(
                            task_id,
                            failure_class=failure_class,
                            reason=reason,
                        )
                        self.registry.add_event(
                            task_id,
                            "retry_scheduled",
                            {"attempt": attempt_no, "failure_class": failure_class.value},
                        )
                        summary.retried += 1
                        logger.warning(
                            "Task %s attempt %d failed (%s): %s; retrying",
                            task_id,
                            attempt_no,
                            failure_class.value,
                            reason,
                        )
                        agent_id = self._rebid(task_id=task_id, current_agent_id=agent_id)
                        continue

                    if self._commit_cancel(task_id, summary, final=True):
                        return summary
                    self.registry.fail(
                        task_id,
                        failure_class=failure_class,
                        reason=f"{reason} (after {attempt_no} attempt(s))",
                    )
                    summary.failed = 1
                    logger.error(
                        "Task %s failed after %d attempt(s): %s",
                        task_id,
                        attempt_no,
                        reason,
                    )
                    return summary
            except InvalidTransition as error:
                self._on_invalid_transition(error)
                return summary

    def _run_attempt(
        self,
        *,
        task_id: str,
        agent_id: str,
        provider: Provider,
        attempt_no: int,
        history: list[str],
    ) -> _Attempt:
        try:
            result = self._dispatch(
                task_id=task_id,
                agent_id=agent_id,
                provider=provider,
                attempt_no=attempt_no,
                history=history,
            )
        except ChaosFault as fault:
            return _Attempt(
                ok=False,
                failure_class=FailureClass.CHAOS_FAULT,
                reason=str(fault),
                retryable=True,
            )
        except ExecutionFailure as error:
            return _Attempt(
                ok=False,
                failure_class=FailureClass.EXECUTION_FAILURE,
                reason=error.reason,
                retryable=error.transient,
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected execution error for task %s", task_id)
            return _Attempt(
                ok=False,
                failure_class=FailureClass.UNEXPECTED_ERROR,
                reason=f"{type(error).__name__}: {error}",
                retryable=True,
            )
        return _Attempt(ok=True, result=result)

    def _dispatch(
        self,
        *,
        task_id: str,
        agent_id: str,
        provider: Provider,
        attempt_no: int,
        history: list[str],
    ) -> ExecutionResult:
        injector = self.fault_injector
        delay_ms = injector.apply_latency(force=injector.is_enabled(FORCED_LATENCY))
        if delay_ms:
            self.registry.add_event(task_id, "chaos_latency_injected", {"delay_ms": delay_ms})

        context: dict[str, Any] = {
            "task_id": task_id,
            "agent_id": agent_id,
            "provider": provider.value,
            "attempt": attempt_no,
            CONTEXT_HISTORY_KEY: list(history),
        }
        delivered = injector.scramble_context(
            context,
            force=injector.is_enabled(FORCED_CONTEXT_LOSS),
        )
        if delivered is not context:
            self.registry.add_event(
                task_id,
                "chaos_context_scrambled",
                {"history_dropped": len(history)},
            )

        snapshot = self.registry.get(task_id)
        if snapshot is None:  # pragma: no cover - tasks are never deleted
            raise RuntimeError(f"Task {task_id!r} vanished from registry")
        return self.backend.execute(
            ExecutionRequest(
                task=snapshot,
                agent_id=agent_id,
                provider=provider,
                context=delivered,
                intercept_tool=self._intercept_tool,
                attempt=attempt_no,
            ),
        )

    def _intercept_tool(self, tool_name: str) -> None:
        injector = self.fault_injector
        injector.intercept_tool(tool_name, force=injector.is_enabled(FORCED_TOOL_FAILURE))

    def _rebid(self, *, task_id: str, current_agent_id: str) -> str:
        task = self.registry.get(task_id)
        if task is None:  # pragma: no cover - tasks are never deleted
            return current_agent_id
        winner_id = self._auction(task)
        if winner_id is None:
            self.registry.add_event(
                task_id,
                "allocation_exhausted",
                {"kept_agent_id": current_agent_id},
            )
            return current_agent_id
        if winner_id != current_agent_id:
            self.registry.assign(task_id, agent_id=winner_id)
            logger.info("Task %s reassigned from %s to %s", task_id, current_agent_id, winner_id)
        return winner_id

    def _commit_cancel(self, task_id: str, summary: CycleSummary, *, final: bool = False) -> bool:
        """Apply a queued cancel; with `final`, later cancels are rejected instead."""

        with self._lock:
            reason = self._cancel_requests.pop(task_id, None)
            if reason is None and final:
                self._committing.add(task_id)
        if reason is None:
            return False
        self.registry.fail(task_id, failure_class=FailureClass.CANCELED, reason=reason)
        summary.failed = 1
        logger.info("Task %s canceled: %s", task_id, reason)
        return True

    def _on_invalid_transition(self, error: InvalidTransition) -> None:
        if self.strict_transitions:
            raise error
        logger.error("Ignoring invalid transition: %s", error)

    @contextmanager
    def _tracking(self, task_id: str) -> Iterator[None]:
        try:
            yield
        finally:
            self._release(task_id)

    def _release(self, task_id: str) -> None:
        with self._lock:
            self._running.discard(task_id)
            self._committing.discard(task_id)
            self._cancel_requests.pop(task_id, None)

    def _wait_for_work(self, *, since: int) -> None:
        deadline = time.monotonic() + self.poll_interval_seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            if self.registry.wait_for_change(since=since, timeout=min(0.1, remaining)) != since:
                return

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s; stopping after current cycle", name)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
