"""Project state store: installed extensions and per-agent skills.

The state lives in a single JSON file at the project root. Operations load
it once as a snapshot, mutate the snapshot in memory and persist it exactly
once through an atomic write (temporary file + rename).
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from extensions.errors import StateError

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = ".skillfactory.json"


class ExtensionRecord(BaseModel):
    """An installed extension."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    source: str
    version: str
    owned_replacements: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("owned_replacements", "replacedSkills"),
        description="Base skill ids this extension currently replaces",
    )


class RemoteSkillRecord(BaseModel):
    """A skill installed from a repository or local directory, outside any extension."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    source: str
    path: str = Field(default="", description="Skill directory relative to the source root")
    ref: str = ""
    version: str = Field(default="", description="Short commit id; empty for local sources")
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=AliasChoices("installed_at", "installedAt"),
    )


class AgentTarget(BaseModel):
    """One configured agent and the skills installed for it."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    skills_dir: str = Field(validation_alias=AliasChoices("skills_dir", "skillsDir"))
    installed_skills: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("installed_skills", "installedSkills"),
    )

    def add_skills(self, skill_ids: list[str]) -> None:
        """Record skills as installed, keeping order and uniqueness."""
        for skill_id in skill_ids:
            if skill_id not in self.installed_skills:
                self.installed_skills.append(skill_id)

    def drop_skills(self, skill_ids: list[str]) -> None:
        drop = set(skill_ids)
        self.installed_skills = [s for s in self.installed_skills if s not in drop]


class ProjectState(BaseModel):
    """Snapshot of everything skillfactory tracks for a project."""

    version: str
    agents: list[AgentTarget] = Field(default_factory=list)
    extensions: list[ExtensionRecord] = Field(default_factory=list)
    base_skills: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("base_skills", "baseSkills"),
        description="Base skill catalog as of the last init or update",
    )
    remote_skills: list[RemoteSkillRecord] = Field(
        default_factory=list,
        validation_alias=AliasChoices("remote_skills", "remoteSkills"),
    )

    def get_extension(self, name: str) -> ExtensionRecord | None:
        for record in self.extensions:
            if record.name == name:
                return record
        return None

    def other_extensions(self, name: str) -> list[ExtensionRecord]:
        """Every record except the named one."""
        return [record for record in self.extensions if record.name != name]

    def upsert_extension(self, record: ExtensionRecord) -> None:
        """Insert a record, or replace the one with the same name in place."""
        for index, existing in enumerate(self.extensions):
            if existing.name == record.name:
                self.extensions[index] = record
                return
        self.extensions.append(record)

    def remove_extension(self, name: str) -> ExtensionRecord | None:
        record = self.get_extension(name)
        if record is not None:
            self.extensions = self.other_extensions(name)
        return record

    def get_remote_skill(self, name: str) -> RemoteSkillRecord | None:
        for record in self.remote_skills:
            if record.name == name:
                return record
        return None

    def upsert_remote_skill(self, record: RemoteSkillRecord) -> None:
        for index, existing in enumerate(self.remote_skills):
            if existing.name == record.name:
                self.remote_skills[index] = record
                return
        self.remote_skills.append(record)

    def remove_remote_skill(self, name: str) -> None:
        self.remote_skills = [r for r in self.remote_skills if r.name != name]

    def snapshot(self) -> ProjectState:
        """Deep copy used as the working state of one operation."""
        return self.model_copy(deep=True)


class StateStore:
    """Load and persist the project state file.

    Example:
        >>> store = StateStore(Path("."))
        >>> state = store.load()
        >>> state.get_extension("hello-commit")
        >>> store.save(state)
    """

    def __init__(self, project_dir: Path, state_file: str = DEFAULT_STATE_FILE):
        self.project_dir = Path(project_dir)
        self.path = self.project_dir / state_file

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ProjectState:
        """Load the state file.

        Raises:
            StateError: If the file is missing or invalid.
        """
        if not self.path.exists():
            raise StateError(
                f"No {self.path.name} found in {self.project_dir}. "
                "Run 'skillfactory init' first."
            )

        try:
            raw = self.path.read_text(encoding="utf-8")
            return ProjectState.model_validate_json(raw)
        except OSError as e:
            raise StateError(f"Cannot read {self.path}: {e}")
        except ValidationError as e:
            raise StateError(f"Invalid state file {self.path}: {e}")

    def save(self, state: ProjectState) -> None:
        """Persist the state atomically.

        The content goes to a temporary file in the same directory which is
        then renamed over the state file, so readers never see a partial file.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = state.model_dump_json(indent=2) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Saved project state to %s", self.path)

    def initialize(
        self,
        agents: list[AgentTarget],
        version: str,
        base_skills: list[str] | None = None,
    ) -> ProjectState:
        """Create and persist a fresh state for a project."""
        state = ProjectState(version=version, agents=agents, base_skills=base_skills or [])
        self.save(state)
        return state
