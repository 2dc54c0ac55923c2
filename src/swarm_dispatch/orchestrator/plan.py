"""JSON task plans: declarative task batches with dependencies given by local keys."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from swarm_dispatch.orchestrator.errors import InvalidDependency
from swarm_dispatch.orchestrator.models import Task, TaskCreate, TaskPriority
from swarm_dispatch.orchestrator.registry import TaskRegistry


@dataclass(slots=True)
class PlanEntry:
    """One task definition from a plan file."""

    key: str
    title: str
    description: str
    required_skills: frozenset[str]
    priority: TaskPriority
    depends_on: tuple[str, ...]


def read_plan(path: Path) -> list[PlanEntry]:
    """Parse and validate a plan file without touching any registry."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("tasks")
    if not isinstance(payload, list):
        raise ValueError(f"Plan file {path} must contain a 'tasks' list.")
    entries = [_parse_entry(item, index=index) for index, item in enumerate(payload)]
    keys = [entry.key for entry in entries]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ValueError(f"Duplicate task keys in plan: {', '.join(duplicates)}")
    return entries


def apply_plan(registry: TaskRegistry, entries: list[PlanEntry]) -> dict[str, Task]:
    """Create plan tasks in dependency order; return created tasks by plan key.

    The whole plan is checked for unknown keys and cycles before the first
    task is created, so a rejected plan leaves the registry untouched.
    """

    ordered = _topological_order(entries)
    created: dict[str, Task] = {}
    for entry in ordered:
        created[entry.key] = registry.create_task(
            TaskCreate(
                title=entry.title,
                description=entry.description,
                required_skills=entry.required_skills,
                dependencies=tuple(created[dep].task_id for dep in entry.depends_on),
                priority=entry.priority,
            ),
        )
    return {entry.key: created[entry.key] for entry in entries}


def load_plan(registry: TaskRegistry, path: Path) -> dict[str, Task]:
    return apply_plan(registry, read_plan(path))


def _topological_order(entries: list[PlanEntry]) -> list[PlanEntry]:
    by_key = {entry.key: entry for entry in entries}
    for entry in entries:
        unknown = [dep for dep in entry.depends_on if dep not in by_key]
        if unknown:
            raise InvalidDependency(
                f"Plan task {entry.key!r} depends on unknown keys: {', '.join(unknown)}",
            )

    ordered: list[PlanEntry] = []
    placed: set[str] = set()
    remaining = list(entries)
    while remaining:
        ready = [entry for entry in remaining if set(entry.depends_on) <= placed]
        if not ready:
            stuck = ", ".join(entry.key for entry in remaining)
            raise InvalidDependency(f"Plan dependencies form a cycle among: {stuck}")
        for entry in ready:
            ordered.append(entry)
            placed.add(entry.key)
        remaining = [entry for entry in remaining if entry.key not in placed]
    return ordered


def _parse_entry(item: Any, *, index: int) -> PlanEntry:
    if not isinstance(item, dict):
        raise ValueError(f"Plan entry #{index} must be an object.")
    key = str(item.get("key") or item.get("id") or f"task-{index + 1}").strip()
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValueError(f"Plan entry {key!r} requires a non-empty 'title'.")
    skills = item.get("skills", item.get("required_skills", []))
    if not isinstance(skills, list) or not all(isinstance(skill, str) for skill in skills):
        raise ValueError(f"Plan entry {key!r}: 'skills' must be a list of strings.")
    depends_on = item.get("depends_on", item.get("dependencies", []))
    if not isinstance(depends_on, list):
        raise ValueError(f"Plan entry {key!r}: 'depends_on' must be a list of keys.")
    priority_raw = str(item.get("priority", TaskPriority.MEDIUM.value)).strip().lower()
    try:
        priority = TaskPriority(priority_raw)
    except ValueError as error:
        raise ValueError(f"Plan entry {key!r}: unknown priority {priority_raw!r}") from error
    return PlanEntry(
        key=key,
        title=title.strip(),
        description=str(item.get("description", "")),
        required_skills=frozenset(skills),
        priority=priority,
        depends_on=tuple(str(dep) for dep in depends_on),
    )
