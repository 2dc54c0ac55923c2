"""Agent roster collaborator interface and in-memory implementation."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from swarm_dispatch.orchestrator.models import OrgAgent


class AgentRoster(Protocol):
    """Read-only query for agents matching a skill set."""

    def find_agents(self, skills: Iterable[str]) -> list[OrgAgent]:
        """Return agents sharing at least one of `skills`."""


class StaticRoster:
    """Fixed list of agents, matched case-insensitively on skill tags."""

    def __init__(self, agents: Iterable[OrgAgent] = ()) -> None:
        self._agents = list(agents)
        ids = [agent.agent_id for agent in self._agents]
        duplicates = sorted({agent_id for agent_id in ids if ids.count(agent_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate agent ids in roster: {', '.join(duplicates)}")

    def find_agents(self, skills: Iterable[str]) -> list[OrgAgent]:
        wanted = {skill.strip().lower() for skill in skills}
        return [
            agent
            for agent in self._agents
            if wanted & {skill.strip().lower() for skill in agent.skills}
        ]

    def all_agents(self) -> list[OrgAgent]:
        return list(self._agents)

    @classmethod
    def from_file(cls, path: Path) -> StaticRoster:
        """Load a JSON list of `{id, role, skills, success_rate}` records."""

        payload = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get("agents", [])
        if not isinstance(payload, list):
            raise ValueError(f"Roster file {path} must contain a list of agents.")
        return cls(_parse_agent(item, index=index) for index, item in enumerate(payload))


def _parse_agent(item: Any, *, index: int) -> OrgAgent:
    if not isinstance(item, dict):
        raise ValueError(f"Roster entry #{index} must be an object.")
    agent_id = item.get("id")
    if not isinstance(agent_id, str) or not agent_id.strip():
        raise ValueError(f"Roster entry #{index} requires a non-empty 'id'.")
    skills = item.get("skills", [])
    if not isinstance(skills, list) or not all(isinstance(skill, str) for skill in skills):
        raise ValueError(f"Roster entry {agent_id!r}: 'skills' must be a list of strings.")
    success_rate = float(item.get("success_rate", 0))
    if not 0 <= success_rate <= 100:
        raise ValueError(f"Roster entry {agent_id!r}: success_rate must be within [0, 100].")
    return OrgAgent(
        agent_id=agent_id.strip(),
        role=str(item.get("role", "generalist")),
        skills=frozenset(skills),
        success_rate=success_rate,
    )
