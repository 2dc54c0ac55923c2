from __future__ import annotations

import threading

import allure
import pytest

from swarm_dispatch.orchestrator.errors import InvalidDependency, InvalidTransition, TaskNotFound
from swarm_dispatch.orchestrator.models import (
    FailureClass,
    Provider,
    TaskCreate,
    TaskPriority,
    TaskStatus,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Task Registry"),
]


def _complete(registry, task_id: str) -> None:
    registry.claim(task_id, agent_id="agent-1")
    registry.complete(task_id, result="ok")


def test_task_without_dependencies_is_eligible_immediately(registry) -> None:
    task = registry.create_task(TaskCreate(title="Standalone", required_skills=frozenset({"x"})))

    assert [item.task_id for item in registry.list_eligible()] == [task.task_id]
    assert task.status == TaskStatus.PENDING
    assert task.attempts == 0


def test_end_to_end_dependency_scenario(registry) -> None:
    task_a = registry.create_task(
        TaskCreate(
            title="A",
            required_skills=frozenset({"research"}),
            priority=TaskPriority.HIGH,
        ),
    )
    task_b = registry.create_task(
        TaskCreate(
            title="B",
            required_skills=frozenset({"coding"}),
            dependencies=(task_a.task_id,),
            priority=TaskPriority.MEDIUM,
        ),
    )

    assert [task.task_id for task in registry.list_eligible()] == [task_a.task_id]

    registry.transition(task_a.task_id, TaskStatus.IN_PROGRESS)
    assert registry.list_eligible() == []

    registry.transition(task_a.task_id, TaskStatus.COMPLETED)
    assert [task.task_id for task in registry.list_eligible()] == [task_b.task_id]


def test_dependent_stays_ineligible_when_dependency_fails(registry) -> None:
    upstream = registry.create_task(TaskCreate(title="Upstream"))
    downstream = registry.create_task(
        TaskCreate(title="Downstream", dependencies=(upstream.task_id,)),
    )
    registry.claim(upstream.task_id, agent_id="agent-1")
    registry.fail(
        upstream.task_id,
        failure_class=FailureClass.EXECUTION_FAILURE,
        reason="boom",
    )

    assert registry.list_eligible() == []
    assert [task.task_id for task in registry.list_stuck()] == [downstream.task_id]


def test_list_stuck_follows_blocked_chain_transitively(registry) -> None:
    root = registry.create_task(TaskCreate(title="Root"))
    middle = registry.create_task(TaskCreate(title="Middle", dependencies=(root.task_id,)))
    leaf = registry.create_task(TaskCreate(title="Leaf", dependencies=(middle.task_id,)))
    other = registry.create_task(TaskCreate(title="Independent"))

    assert registry.list_stuck() == []

    registry.claim(root.task_id, agent_id="agent-1")
    registry.fail(root.task_id, failure_class=FailureClass.CHAOS_FAULT, reason="tool failed")

    stuck_ids = [task.task_id for task in registry.list_stuck()]
    assert stuck_ids == [middle.task_id, leaf.task_id]
    assert other.task_id not in stuck_ids


def test_completion_wakes_up_waiters(registry) -> None:
    upstream = registry.create_task(TaskCreate(title="Upstream"))
    downstream = registry.create_task(
        TaskCreate(title="Downstream", dependencies=(upstream.task_id,)),
    )
    registry.claim(upstream.task_id, agent_id="agent-1")
    since = registry.version
    observed: list[int] = []
    ready = threading.Event()

    def _waiter() -> None:
        ready.set()
        observed.append(registry.wait_for_change(since=since, timeout=5.0))

    thread = threading.Thread(target=_waiter)
    thread.start()
    ready.wait(timeout=5.0)
    registry.complete(upstream.task_id)
    thread.join(timeout=5.0)

    assert observed and observed[0] != since
    assert [task.task_id for task in registry.list_eligible()] == [downstream.task_id]


def test_wait_for_change_returns_current_version_on_timeout(registry) -> None:
    version = registry.version

    assert registry.wait_for_change(since=version, timeout=0.01) == version


def test_cycle_rejection_leaves_registry_unchanged(registry) -> None:
    task_a = registry.create_task(TaskCreate(title="A"))
    task_b = registry.create_task(TaskCreate(title="B", dependencies=(task_a.task_id,)))
    version = registry.version
    event_count = len(registry.list_events())

    with pytest.raises(InvalidDependency, match="cycle"):
        registry.update_dependencies(task_a.task_id, (task_b.task_id,))

    assert registry.get(task_a.task_id).dependencies == ()
    assert registry.get(task_b.task_id).dependencies == (task_a.task_id,)
    assert registry.version == version
    assert len(registry.list_events()) == event_count


def test_self_dependency_is_rejected(registry) -> None:
    task = registry.create_task(TaskCreate(title="Loop"))

    with pytest.raises(InvalidDependency, match="itself"):
        registry.update_dependencies(task.task_id, (task.task_id,))


def test_unknown_dependency_is_rejected_without_creating_task(registry) -> None:
    with pytest.raises(InvalidDependency, match="Unknown dependency"):
        registry.create_task(TaskCreate(title="Orphan", dependencies=("missing",)))

    assert len(registry) == 0


def test_dependencies_can_only_change_while_pending(registry) -> None:
    first = registry.create_task(TaskCreate(title="First"))
    second = registry.create_task(TaskCreate(title="Second"))
    registry.claim(first.task_id, agent_id="agent-1")

    with pytest.raises(InvalidDependency, match="in_progress"):
        registry.update_dependencies(first.task_id, (second.task_id,))


def test_update_dependencies_accepts_acyclic_graph(registry) -> None:
    first = registry.create_task(TaskCreate(title="First"))
    second = registry.create_task(TaskCreate(title="Second"))

    updated = registry.update_dependencies(second.task_id, (first.task_id,))

    assert updated.dependencies == (first.task_id,)
    assert [task.task_id for task in registry.list_eligible()] == [first.task_id]
    assert registry.list_events(second.task_id)[-1].event_type == "dependencies_updated"


def test_concurrent_reverse_dependencies_cannot_both_succeed(registry) -> None:
    task_a = registry.create_task(TaskCreate(title="A"))
    task_b = registry.create_task(TaskCreate(title="B"))
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def _link(task_id: str, dependency_id: str) -> None:
        barrier.wait(timeout=5.0)
        try:
            registry.update_dependencies(task_id, (dependency_id,))
        except InvalidDependency:
            result = "rejected"
        else:
            result = "accepted"
        with outcomes_lock:
            outcomes.append(result)

    threads = [
        threading.Thread(target=_link, args=(task_a.task_id, task_b.task_id)),
        threading.Thread(target=_link, args=(task_b.task_id, task_a.task_id)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert sorted(outcomes) == ["accepted", "rejected"]


def test_concurrent_claims_on_one_task_cannot_both_succeed(registry) -> None:
    task = registry.create_task(TaskCreate(title="Contested"))
    barrier = threading.Barrier(2)
    winners: list[str] = []
    rejected: list[str] = []
    outcomes_lock = threading.Lock()

    def _claim(agent_id: str) -> None:
        barrier.wait(timeout=5.0)
        try:
            registry.claim(task.task_id, agent_id=agent_id)
        except InvalidTransition:
            with outcomes_lock:
                rejected.append(agent_id)
        else:
            with outcomes_lock:
                winners.append(agent_id)

    threads = [threading.Thread(target=_claim, args=(agent_id,)) for agent_id in ("a-1", "a-2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert len(winners) == 1
    assert len(rejected) == 1
    assert registry.get(task.task_id).assigned_agent_id == winners[0]
    event_types = [event.event_type for event in registry.list_events(task.task_id)]
    assert event_types.count("status_in_progress") == 1
    assert event_types.count("agent_assigned") == 1


def test_record_failure_rejected_on_terminal_task(registry) -> None:
    task = registry.create_task(TaskCreate(title="Finished"))
    _complete(registry, task.task_id)
    event_count = len(registry.list_events(task.task_id))

    with pytest.raises(InvalidTransition):
        registry.record_failure(
            task.task_id,
            failure_class=FailureClass.EXECUTION_FAILURE,
            reason="late failure",
        )

    stored = registry.get(task.task_id)
    assert stored.failure_class is None
    assert stored.error_summary is None
    assert len(registry.list_events(task.task_id)) == event_count

def test_blank_title_is_rejected(registry) -> None:
    with pytest.raises(ValueError, match="title"):
        registry.create_task(TaskCreate(title="   "))


def test_create_task_normalizes_skills(registry) -> None:
    task = registry.create_task(
        TaskCreate(title="Skills", required_skills=frozenset({" coding ", "", "research"})),
    )

    assert task.required_skills == frozenset({"coding", "research"})


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ((), TaskStatus.COMPLETED),
        ((), TaskStatus.FAILED),
        ((TaskStatus.IN_PROGRESS,), TaskStatus.PENDING),
        ((TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED), TaskStatus.IN_PROGRESS),
        ((TaskStatus.IN_PROGRESS, TaskStatus.FAILED), TaskStatus.COMPLETED),
    ],
)
def test_invalid_transitions_are_rejected(registry, path, target) -> None:
    task = registry.create_task(TaskCreate(title="Machine"))
    for status in path:
        registry.transition(task.task_id, status)
    current = registry.get(task.task_id).status

    with pytest.raises(InvalidTransition) as error:
        registry.transition(task.task_id, target)

    assert error.value.status_from == current
    assert error.value.status_to == target
    assert registry.get(task.task_id).status == current


def test_claim_records_agent_provider_and_start_time(registry) -> None:
    task = registry.create_task(TaskCreate(title="Claimed"))

    claimed = registry.claim(task.task_id, agent_id="agent-7", provider=Provider.COST_OPTIMIZED)

    assert claimed.status == TaskStatus.IN_PROGRESS
    assert claimed.assigned_agent_id == "agent-7"
    assert claimed.provider == Provider.COST_OPTIMIZED
    assert claimed.started_at is not None
    assert claimed.finished_at is None
    with pytest.raises(InvalidTransition):
        registry.claim(task.task_id, agent_id="agent-8")


def test_fail_records_reason_before_terminal_transition(registry) -> None:
    task = registry.create_task(TaskCreate(title="Doomed"))
    registry.claim(task.task_id, agent_id="agent-1")

    failed = registry.fail(
        task.task_id,
        failure_class=FailureClass.EXECUTION_FAILURE,
        reason="backend exploded",
    )

    assert failed.status == TaskStatus.FAILED
    assert failed.error_summary == "backend exploded"
    assert failed.failure_class == FailureClass.EXECUTION_FAILURE
    assert failed.finished_at is not None
    event_types = [event.event_type for event in registry.list_events(task.task_id)]
    assert event_types[-2:] == ["failure_recorded", "status_failed"]


def test_fail_requires_in_progress_status(registry) -> None:
    task = registry.create_task(TaskCreate(title="Idle"))

    with pytest.raises(InvalidTransition):
        registry.fail(task.task_id, failure_class=FailureClass.CANCELED, reason="nope")

    assert registry.get(task.task_id).error_summary is None


def test_start_attempt_counts_attempts(registry) -> None:
    task = registry.create_task(TaskCreate(title="Counted"))
    with pytest.raises(InvalidTransition):
        registry.start_attempt(task.task_id)
    registry.claim(task.task_id, agent_id="agent-1")

    assert registry.start_attempt(task.task_id) == 1
    assert registry.start_attempt(task.task_id) == 2
    assert registry.get(task.task_id).attempts == 2


def test_completed_task_keeps_result_and_audit_trail(registry) -> None:
    task = registry.create_task(TaskCreate(title="Audited"))
    _complete(registry, task.task_id)

    stored = registry.get(task.task_id)
    assert stored.result == "ok"
    assert stored.is_terminal
    transitions = [
        (event.status_from, event.status_to)
        for event in registry.list_events(task.task_id)
        if event.event_type.startswith("status_")
    ]
    assert transitions == [
        (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
    ]


def test_returned_tasks_are_snapshots(registry) -> None:
    task = registry.create_task(TaskCreate(title="Original"))
    task.title = "Mutated"
    task.status = TaskStatus.FAILED

    stored = registry.get(task.task_id)
    assert stored.title == "Original"
    assert stored.status == TaskStatus.PENDING


def test_unknown_task_lookups(registry) -> None:
    assert registry.get("missing") is None
    assert "missing" not in registry

    with pytest.raises(TaskNotFound) as error:
        registry.transition("missing", TaskStatus.IN_PROGRESS)

    assert isinstance(error.value, KeyError)
    assert error.value.task_id == "missing"


def test_list_tasks_filters_by_status(registry) -> None:
    done = registry.create_task(TaskCreate(title="Done"))
    waiting = registry.create_task(TaskCreate(title="Waiting"))
    _complete(registry, done.task_id)

    assert [task.task_id for task in registry.list_tasks()] == [done.task_id, waiting.task_id]
    assert [task.task_id for task in registry.list_tasks(TaskStatus.PENDING)] == [
        waiting.task_id,
    ]
