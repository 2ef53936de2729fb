"""Skill installer: places skill directories into one agent's layout."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable

from skills.agents import AgentProfile, SkillLayout, get_agent_profile
from skills.catalog import SKILL_FILE, BaseSkillCatalog

logger = logging.getLogger(__name__)


class SkillInstaller:
    """Install and remove skills for a single agent.

    Installing never raises for per-skill problems: it returns False and
    logs, so callers can count per-agent successes.

    Example:
        >>> installer = SkillInstaller(Path("."), "claude")
        >>> installer.install(Path("ext/skills/my-commit"), "sf-commit")
        True
        >>> installer.skill_file("sf-commit")
        PosixPath('.claude/skills/sf-commit/SKILL.md')
    """

    def __init__(
        self,
        project_dir: Path,
        agent_id: str,
        skills_dir: str | None = None,
        catalog: BaseSkillCatalog | None = None,
    ):
        """Initialize the installer.

        Args:
            project_dir: Project root.
            agent_id: Agent identifier (see skills.agents).
            skills_dir: Skills directory relative to the project
                (default: the agent profile's directory).
            catalog: Base skill catalog used by install_base.
        """
        self.project_dir = Path(project_dir)
        self.agent_id = agent_id
        self.profile: AgentProfile = get_agent_profile(agent_id)
        self.skills_dir = self.project_dir / (skills_dir or self.profile.skills_dir)
        self.catalog = catalog or BaseSkillCatalog()

    @property
    def config_dir(self) -> Path:
        """Root of the agent's file tree inside the project."""
        return self.project_dir / self.profile.config_dir

    def skill_location(self, skill_id: str) -> Path:
        """Directory (nested layout) or file (flat layout) of a skill."""
        if self.profile.layout == SkillLayout.FLAT:
            return self.config_dir / self.profile.flat_dir / f"{skill_id}.md"
        return self.skills_dir / skill_id

    def skill_file(self, skill_id: str) -> Path:
        """Path of the markdown file agents read for a skill."""
        location = self.skill_location(skill_id)
        if self.profile.layout == SkillLayout.FLAT:
            return location
        return location / SKILL_FILE

    def is_installed(self, skill_id: str) -> bool:
        return self.skill_file(skill_id).exists()

    def install(self, source_dir: Path, skill_id: str) -> bool:
        """Install a skill directory under the given id.

        The existing skill with that id, if any, is replaced.

        Args:
            source_dir: Directory containing SKILL.md (and resources).
            skill_id: Id to install under.

        Returns:
            True if the skill is now installed from source_dir.
        """
        source_file = source_dir / SKILL_FILE
        if not source_file.is_file():
            logger.warning(
                "[%s] Cannot install %s: %s not found", self.agent_id, skill_id, source_file
            )
            return False

        try:
            if self.profile.layout == SkillLayout.FLAT:
                self._install_flat(source_file, skill_id)
            else:
                self._install_nested(source_dir, skill_id)
        except OSError as e:
            logger.warning("[%s] Failed to install %s: %s", self.agent_id, skill_id, e)
            return False

        logger.debug("[%s] Installed %s from %s", self.agent_id, skill_id, source_dir)
        return True

    def _install_nested(self, source_dir: Path, skill_id: str) -> None:
        target = self.skill_location(skill_id)
        staging = target.with_name(f".{skill_id}.staging")
        target.parent.mkdir(parents=True, exist_ok=True)

        if staging.exists():
            shutil.rmtree(staging)
        shutil.copytree(source_dir, staging)

        if target.exists():
            shutil.rmtree(target)
        staging.rename(target)

    def _install_flat(self, source_file: Path, skill_id: str) -> None:
        target = self.skill_location(skill_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(source_file.read_text(encoding="utf-8"), encoding="utf-8")

    def install_base(self, skill_id: str) -> bool:
        """Install (or restore) a base skill from the catalog."""
        source_dir = self.catalog.source_dir(skill_id)
        if source_dir is None:
            logger.warning("[%s] Unknown base skill: %s", self.agent_id, skill_id)
            return False
        return self.install(source_dir, skill_id)

    def install_base_skills(self, skill_ids: Iterable[str]) -> list[str]:
        """Install several base skills.

        Returns:
            Ids that installed successfully, in input order.
        """
        return [skill_id for skill_id in skill_ids if self.install_base(skill_id)]

    def remove(self, skill_ids: Iterable[str]) -> list[str]:
        """Remove installed skills.

        Args:
            skill_ids: Ids to remove; ids that are not installed are skipped.

        Returns:
            Ids that were actually removed.
        """
        removed: list[str] = []
        for skill_id in skill_ids:
            location = self.skill_location(skill_id)
            if not location.exists():
                continue
            try:
                if location.is_dir():
                    shutil.rmtree(location)
                else:
                    location.unlink()
            except OSError as e:
                logger.warning("[%s] Failed to remove %s: %s", self.agent_id, skill_id, e)
                continue
            removed.append(skill_id)
        return removed
