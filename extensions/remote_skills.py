"""Remote skills: single skills installed straight from a repository.

A remote skill is a directory holding SKILL.md that lives in a GitHub
repository (or a local directory) and is installed for every configured
agent without being wrapped in an extension. Repositories may hold one
skill at their root or a collection of skills:

- ``SKILL.md`` at the root
- ``skills/<name>/SKILL.md``
- ``<name>/SKILL.md``

Each installed skill is recorded in the project state with the commit it
was installed from, so ``update`` only downloads sources that moved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from extensions.errors import SkillNotInstalledError, SourceResolutionError
from extensions.markers import front_matter_end
from extensions.reconciler import (
    ExtensionReconciler,
    OperationReport,
    OperationState,
    StepStatus,
)
from extensions.sources import FetchedTree, GitHubSource, is_github_source
from extensions.state import ProjectState, RemoteSkillRecord
from skills.catalog import SKILL_FILE

logger = logging.getLogger(__name__)

_SKILL_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_SKIPPED_DIRS = {"node_modules"}


@dataclass
class DetectedSkill:
    """A skill directory found inside a source tree."""

    name: str
    description: str
    path: Path
    relative_path: str


@dataclass
class SkillReport(OperationReport):
    """Result of adding, updating or removing remote skills."""

    installed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    up_to_date: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


def read_skill_info(skill_dir: Path) -> tuple[str, str]:
    """Name and description from the front matter of a SKILL.md.

    Falls back to the directory name when the front matter has no name.
    """
    text = (skill_dir / SKILL_FILE).read_text(encoding="utf-8")
    end = front_matter_end(text)
    data = {}
    if end is not None:
        try:
            data = yaml.safe_load("\n".join(text[:end].splitlines()[1:-1])) or {}
        except yaml.YAMLError as e:
            logger.debug("Unreadable front matter in %s: %s", skill_dir, e)
        if not isinstance(data, dict):
            data = {}
    name = str(data.get("name") or skill_dir.name).strip()
    return name, str(data.get("description") or "").strip()


def detect_skills(root: Path) -> list[DetectedSkill]:
    """Find the skills of a source tree.

    A SKILL.md at the root wins; otherwise ``skills/*`` is searched, then
    the top-level directories. Hidden and underscore directories are ignored.
    """

    def detect(skill_dir: Path) -> DetectedSkill:
        name, description = read_skill_info(skill_dir)
        relative = skill_dir.relative_to(root).as_posix()
        return DetectedSkill(
            name=name,
            description=description,
            path=skill_dir,
            relative_path="" if relative == "." else relative,
        )

    if (root / SKILL_FILE).is_file():
        return [detect(root)]

    for container in (root / "skills", root):
        if not container.is_dir():
            continue
        found = [
            detect(entry)
            for entry in sorted(container.iterdir())
            if entry.is_dir()
            and not entry.name.startswith((".", "_"))
            and entry.name not in _SKIPPED_DIRS
            and (entry / SKILL_FILE).is_file()
        ]
        if found:
            return found
    return []


class RemoteSkillManager:
    """Add, update and remove remote skills of a project.

    Shares the reconciler's state store, resolver, catalog and installers,
    so extension injections that target a remote skill survive a reinstall.

    Example:
        >>> manager = RemoteSkillManager(ExtensionReconciler(Path(".")))
        >>> manager.add("github:acme/skills/lint").installed
        ['lint']
    """

    def __init__(self, reconciler: ExtensionReconciler):
        self.reconciler = reconciler
        self.store = reconciler.store
        self.resolver = reconciler.resolver
        self.catalog = reconciler.catalog

    def list_installed(self) -> list[RemoteSkillRecord]:
        return list(self.store.load().remote_skills)

    def add(self, source: str, names: list[str] | None = None) -> SkillReport:
        """Install skills from a source for every agent.

        A GitHub source may name one skill by path or name
        (``github:owner/repo/skills/lint``); otherwise every detected skill
        is installed, or only those listed in names.

        Raises:
            StateError: If the project is not initialized.
            SourceResolutionError: If the source cannot be fetched, holds no
                skills, or a requested skill is not in it.
        """
        report = SkillReport(operation="skill-add", target=source)
        state = self.store.load().snapshot()

        report.transition(OperationState.RESOLVING)
        selector = ""
        fetch_source = source
        try:
            if is_github_source(source):
                ref = GitHubSource.parse(source)
                selector = ref.path
                fetch_source = GitHubSource(ref.owner, ref.repo, ref=ref.ref).format()
            tree = self.resolver.fetch(fetch_source)
        except SourceResolutionError:
            report.transition(OperationState.FAILED)
            raise

        with tree:
            try:
                selected = self._select(tree, selector, names)
            except SourceResolutionError:
                report.transition(OperationState.FAILED)
                raise
            record_source, git_ref = self._record_source(tree, source)
            version = ""
            if tree.github is not None:
                version = self.resolver.latest_version(tree.github.format()) or ""

            report.transition(OperationState.VALIDATING)
            accepted = [skill for skill in selected if self._accept(state, skill, report)]

            report.transition(OperationState.INSTALLING)
            for skill in accepted:
                if not self._install(state, skill.name, skill.path, report):
                    continue
                state.upsert_remote_skill(
                    RemoteSkillRecord(
                        name=skill.name,
                        source=record_source,
                        path=skill.relative_path,
                        ref=git_ref,
                        version=version,
                    )
                )

        self._finish(state, report)
        return report

    def remove(self, name: str) -> SkillReport:
        """Remove a remote skill from every agent.

        Raises:
            SkillNotInstalledError: If no remote skill has that name.
        """
        report = SkillReport(operation="skill-remove", target=name)
        state = self.store.load().snapshot()

        report.transition(OperationState.VALIDATING)
        if state.get_remote_skill(name) is None:
            report.transition(OperationState.FAILED)
            raise SkillNotInstalledError(name)

        report.transition(OperationState.INSTALLING)
        for agent in state.agents:
            self.reconciler.installer_for(agent).remove([name])
            agent.drop_skills([name])
        report.removed.append(name)
        report.add("skill", StepStatus.OK, f"removed {name}")

        report.transition(OperationState.RECORDING)
        state.remove_remote_skill(name)
        self.store.save(state)

        report.transition(OperationState.DONE)
        return report

    def update(self, name: str | None = None) -> SkillReport:
        """Reinstall remote skills whose source moved to a new commit.

        Local sources are always reinstalled. Skills are grouped by source so
        each repository is downloaded at most once.

        Raises:
            SkillNotInstalledError: If name is given and not installed.
        """
        report = SkillReport(operation="skill-update", target=name)
        state = self.store.load().snapshot()

        report.transition(OperationState.VALIDATING)
        records = [r for r in state.remote_skills if name is None or r.name == name]
        if name is not None and not records:
            report.transition(OperationState.FAILED)
            raise SkillNotInstalledError(name)

        groups: dict[str, list[RemoteSkillRecord]] = {}
        for record in records:
            source = record.source
            if record.ref and is_github_source(source):
                source = f"{source}#{record.ref}"
            groups.setdefault(source, []).append(record)

        report.transition(OperationState.INSTALLING)
        for source, group in groups.items():
            latest = self.resolver.latest_version(source)
            if latest is not None and all(r.version == latest for r in group):
                for record in group:
                    report.up_to_date.append(record.name)
                    report.add("skill", StepStatus.SKIPPED, f"{record.name}: up to date ({latest})")
                continue

            try:
                tree = self.resolver.fetch(source)
            except SourceResolutionError as e:
                report.add("download", StepStatus.FAILED, f"{source}: {e}")
                continue

            with tree:
                detected = detect_skills(tree.root)
                for record in group:
                    match = next(
                        (
                            d
                            for d in detected
                            if d.relative_path == record.path or d.name == record.name
                        ),
                        None,
                    )
                    if match is None:
                        report.add(
                            "skill", StepStatus.WARNING, f"{record.name}: no longer in {source}"
                        )
                        continue
                    if self._install(state, record.name, match.path, report):
                        record.version = latest or ""
                        record.installed_at = datetime.now(timezone.utc)

        self._finish(state, report)
        return report

    # ------------------------------------------------------------------

    def _select(
        self, tree: FetchedTree, selector: str, names: list[str] | None
    ) -> list[DetectedSkill]:
        detected = detect_skills(tree.root)
        if not detected:
            raise SourceResolutionError(f"No skills found in {tree.source}")

        wanted = ([selector] if selector else []) + list(names or [])
        if not wanted:
            return detected

        available = ", ".join(d.name for d in detected)
        selected: list[DetectedSkill] = []
        for key in wanted:
            match = next(
                (d for d in detected if d.relative_path == key or d.name == key), None
            )
            if match is None:
                raise SourceResolutionError(
                    f"Skill {key!r} not found in {tree.source}. Available: {available}"
                )
            if match not in selected:
                selected.append(match)
        return selected

    def _record_source(self, tree: FetchedTree, source: str) -> tuple[str, str]:
        """Source string and ref to store, without any skill path."""
        if tree.github is None:
            return source, ""
        ref = tree.github
        return GitHubSource(ref.owner, ref.repo).format(), ref.ref

    def _accept(self, state: ProjectState, skill: DetectedSkill, report: SkillReport) -> bool:
        reason = None
        if not _SKILL_NAME_RE.match(skill.name):
            reason = "invalid skill name"
        elif self.catalog.contains(skill.name):
            reason = "conflicts with a base skill"
        elif state.get_remote_skill(skill.name) is None and any(
            skill.name in agent.installed_skills for agent in state.agents
        ):
            reason = "already installed by an extension"

        if reason is None:
            return True
        report.skipped.append(skill.name)
        report.add("skill", StepStatus.SKIPPED, f"{skill.name}: {reason}")
        return False

    def _install(
        self, state: ProjectState, name: str, skill_dir: Path, report: SkillReport
    ) -> bool:
        """Install one skill on every agent, all or nothing.

        A new skill that installs on only some agents is removed again. An
        existing one keeps its recorded version so the next update retries.
        """
        if not state.agents:
            report.add("skill", StepStatus.SKIPPED, f"{name}: no agents configured")
            return False

        succeeded = [
            agent
            for agent in state.agents
            if self.reconciler.installer_for(agent).install(skill_dir, name)
        ]
        if len(succeeded) == len(state.agents):
            for agent in state.agents:
                agent.add_skills([name])
            report.installed.append(name)
            report.add("skill", StepStatus.OK, name)
            return True

        if state.get_remote_skill(name) is not None or not succeeded:
            report.add(
                "skill",
                StepStatus.FAILED,
                f"{name}: installed on {len(succeeded)} of {len(state.agents)} agents",
            )
            return False

        report.transition(OperationState.ROLLING_BACK)
        for agent in succeeded:
            self.reconciler.installer_for(agent).remove([name])
        report.add(
            "skill",
            StepStatus.ROLLED_BACK,
            f"{name}: installed on {len(succeeded)} of {len(state.agents)} agents",
        )
        report.transition(OperationState.INSTALLING)
        return False

    def _finish(self, state: ProjectState, report: SkillReport) -> None:
        report.transition(OperationState.RECORDING)
        self.store.save(state)

        if report.installed:
            report.transition(OperationState.INJECTING)
            count = self.reconciler.reapply_injections(
                state, state.extensions, set(report.installed)
            )
            if count:
                report.add("inject", StepStatus.OK, f"re-applied {count} injection(s)")

        report.transition(OperationState.DONE)
