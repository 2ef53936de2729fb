"""Supported coding agents and their on-disk layouts.

Each agent reads skills from its own directory tree inside the project.
Most agents use a nested layout (``<skills_dir>/<id>/SKILL.md`` plus any
resources next to it); some read flat workflow files
(``<config_dir>/<flat_dir>/<id>.md``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SkillLayout(str, Enum):
    """How an agent expects skill files to be laid out."""

    NESTED = "nested"
    FLAT = "flat"


@dataclass(frozen=True)
class AgentProfile:
    """Static description of one supported agent.

    Attributes:
        id: Agent identifier used in the project state file.
        display_name: Human readable name.
        config_dir: Agent configuration directory, relative to the project.
        skills_dir: Default skills directory, relative to the project.
        layout: Nested skill directories or flat markdown files.
        flat_dir: Sub-directory of config_dir holding flat skill files.
        settings_file: JSON settings file that takes server configs, if any.
        settings_key: Top-level key of the server table in settings_file.
    """

    id: str
    display_name: str
    config_dir: str
    skills_dir: str
    layout: SkillLayout = SkillLayout.NESTED
    flat_dir: str = "workflows"
    settings_file: str | None = None
    settings_key: str = "mcpServers"

    @property
    def supports_server_configs(self) -> bool:
        return self.settings_file is not None


AGENT_PROFILES: dict[str, AgentProfile] = {
    "claude": AgentProfile(
        id="claude",
        display_name="Claude Code",
        config_dir=".claude",
        skills_dir=".claude/skills",
        settings_file=".mcp.json",
    ),
    "cursor": AgentProfile(
        id="cursor",
        display_name="Cursor",
        config_dir=".cursor",
        skills_dir=".cursor/skills",
        settings_file=".cursor/mcp.json",
    ),
    "codex": AgentProfile(
        id="codex",
        display_name="Codex CLI",
        config_dir=".codex",
        skills_dir=".codex/skills",
    ),
    "copilot": AgentProfile(
        id="copilot",
        display_name="GitHub Copilot",
        config_dir=".github",
        skills_dir=".github/skills",
        settings_file=".vscode/mcp.json",
        settings_key="servers",
    ),
    "antigravity": AgentProfile(
        id="antigravity",
        display_name="Antigravity",
        config_dir=".agent",
        skills_dir=".agent/skills",
        layout=SkillLayout.FLAT,
        flat_dir="workflows",
    ),
}


def get_agent_profile(agent_id: str) -> AgentProfile:
    """Look up an agent profile.

    Args:
        agent_id: Agent identifier.

    Returns:
        The matching AgentProfile.

    Raises:
        ValueError: If the agent is not supported.
    """
    try:
        return AGENT_PROFILES[agent_id]
    except KeyError:
        supported = ", ".join(sorted(AGENT_PROFILES))
        raise ValueError(f"Unknown agent: {agent_id}. Supported: {supported}")
