"""Extension lifecycle reconciler.

Installs, updates and removes extensions across every configured agent
while keeping three guarantees:

- injected text is idempotent and exactly reversible (see markers);
- at most one extension replaces a given base skill;
- a failure partway through an operation never leaves the project worse
  off than before it started: partial replacement installs are rolled back
  and the project state is only persisted after every per-agent effect has
  been applied or undone.

All per-agent work runs sequentially in agent order, so success counts are
deterministic. The state file is loaded once per operation as a snapshot
and written once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from core import __version__
from extensions.errors import ExtensionError, ExtensionNotInstalledError
from extensions.injections import InjectionEngine
from extensions.manifest import ExtensionManifest, skill_id_for
from extensions.replacements import check_conflict, compute_restoration, owned_ids
from extensions.server_configs import ServerConfigMerger
from extensions.sources import SourceResolver
from extensions.state import (
    AgentTarget,
    ExtensionRecord,
    ProjectState,
    StateStore,
)
from extensions.storage import ExtensionStorage
from skills.agents import get_agent_profile
from skills.catalog import BaseSkillCatalog
from skills.installer import SkillInstaller

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    """Phases of a lifecycle operation."""

    RESOLVING = "resolving"
    VALIDATING = "validating"
    INSTALLING = "installing"
    ROLLING_BACK = "rolling_back"
    RECORDING = "recording"
    INJECTING = "injecting"
    DONE = "done"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Outcome of one reported step."""

    OK = "ok"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"
    WARNING = "warning"


@dataclass
class StepOutcome:
    """One line of an operation report."""

    step: str
    status: StepStatus
    detail: str = ""
    agent: str | None = None


@dataclass
class OperationReport:
    """What an operation did, step by step.

    Attributes:
        operation: "install", "update" or "remove".
        target: Source string or extension name the operation ran on.
        state: Last state reached.
        history: Every state the operation went through, in order.
        steps: Per-step outcomes.
    """

    operation: str
    target: str | None = None
    state: OperationState = OperationState.RESOLVING
    history: list[OperationState] = field(default_factory=list)
    steps: list[StepOutcome] = field(default_factory=list)

    def transition(self, state: OperationState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("%s %s: %s", self.operation, self.target or "", state.value)

    def add(
        self,
        step: str,
        status: StepStatus,
        detail: str = "",
        agent: str | None = None,
    ) -> StepOutcome:
        """Record a step outcome and log it."""
        outcome = StepOutcome(step=step, status=status, detail=detail, agent=agent)
        self.steps.append(outcome)

        prefix = f"[{agent}] " if agent else ""
        if status in (StepStatus.FAILED, StepStatus.WARNING, StepStatus.ROLLED_BACK):
            logger.warning("%s%s: %s %s", prefix, step, status.value, detail)
        else:
            logger.info("%s%s: %s %s", prefix, step, status.value, detail)
        return outcome

    @property
    def ok(self) -> bool:
        return self.state == OperationState.DONE

    @property
    def warnings(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.WARNING]

    @property
    def failures(self) -> list[StepOutcome]:
        return [
            s
            for s in self.steps
            if s.status in (StepStatus.FAILED, StepStatus.ROLLED_BACK)
        ]


@dataclass
class InstallReport(OperationReport):
    """Result of installing (or re-installing) an extension."""

    manifest: ExtensionManifest | None = None
    previous_version: str | None = None
    replaced: list[str] = field(default_factory=list)
    failed_replacements: list[str] = field(default_factory=list)
    installed_skills: dict[str, list[str]] = field(default_factory=dict)
    injections: int = 0
    server_configs: list[str] = field(default_factory=list)


@dataclass
class UpdateReport(OperationReport):
    """Result of a bulk update of base skills and extensions."""

    added_skills: dict[str, list[str]] = field(default_factory=dict)
    removed_skills: dict[str, list[str]] = field(default_factory=dict)
    skipped_replaced: list[str] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    injections: int = 0


@dataclass
class RemoveReport(OperationReport):
    """Result of removing an extension."""

    manifest_missing: bool = False
    removed_skills: dict[str, list[str]] = field(default_factory=dict)
    restored: list[str] = field(default_factory=list)
    server_configs: list[str] = field(default_factory=list)


InstallerFactory = Callable[[AgentTarget], SkillInstaller]


class ExtensionReconciler:
    """Install, update and remove extensions for a project.

    Example:
        >>> reconciler = ExtensionReconciler(Path("."))
        >>> report = reconciler.install("github:acme/hello-commit")
        >>> report.replaced
        ['sf-commit']
        >>> reconciler.remove("hello-commit")
    """

    def __init__(
        self,
        project_dir: Path,
        store: StateStore | None = None,
        storage: ExtensionStorage | None = None,
        resolver: SourceResolver | None = None,
        catalog: BaseSkillCatalog | None = None,
        installer_factory: InstallerFactory | None = None,
        server_configs: ServerConfigMerger | None = None,
        version: str = __version__,
    ):
        """Initialize the reconciler.

        Args:
            project_dir: Project root.
            store: Project state store.
            storage: Durable extension storage.
            resolver: Extension source resolver.
            catalog: Base skill catalog.
            installer_factory: Builds the skill installer of an agent.
            server_configs: Server configuration merger.
            version: Version recorded in the state file on update.
        """
        self.project_dir = Path(project_dir)
        self.store = store or StateStore(self.project_dir)
        self.storage = storage or ExtensionStorage(self.project_dir)
        self.resolver = resolver or SourceResolver(base_dir=self.project_dir)
        self.catalog = catalog or BaseSkillCatalog()
        self.installer_factory = installer_factory or self._default_installer
        self.server_configs = server_configs or ServerConfigMerger(self.project_dir)
        self.version = version
        self.injections = InjectionEngine(self.installer_for)

    def _default_installer(self, agent: AgentTarget) -> SkillInstaller:
        return SkillInstaller(self.project_dir, agent.id, agent.skills_dir, self.catalog)

    def installer_for(self, agent: AgentTarget) -> SkillInstaller:
        return self.installer_factory(agent)

    # ------------------------------------------------------------------
    # Project setup
    # ------------------------------------------------------------------

    def init_project(self, agent_ids: list[str]) -> ProjectState:
        """Create the state file and install base skills for each agent.

        Args:
            agent_ids: Agents to configure.

        Returns:
            The persisted state.
        """
        available = self.catalog.available()
        agents: list[AgentTarget] = []
        for agent_id in agent_ids:
            profile = get_agent_profile(agent_id)
            agent = AgentTarget(id=agent_id, skills_dir=profile.skills_dir)
            agent.add_skills(self.installer_for(agent).install_base_skills(available))
            agents.append(agent)

        return self.store.initialize(agents, self.version, base_skills=available)

    def list_installed(self) -> list[tuple[ExtensionRecord, ExtensionManifest | None]]:
        """Installed extension records with their stored manifests."""
        state = self.store.load()
        return [
            (record, self.storage.load_manifest(record.name))
            for record in state.extensions
        ]

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(self, source: str) -> InstallReport:
        """Install an extension, or re-install it over an existing version.

        Args:
            source: Local path, tarball or GitHub reference.

        Returns:
            InstallReport describing every step.

        Raises:
            StateError: If the project is not initialized.
            SourceResolutionError: If the source cannot be resolved.
            ReplacementConflictError: If another extension owns a skill
                this one replaces. Nothing has been modified in that case.
        """
        report = InstallReport(operation="install", target=source)
        state = self.store.load().snapshot()

        report.transition(OperationState.RESOLVING)
        try:
            resolved = self.resolver.resolve(source)
        except ExtensionError:
            report.transition(OperationState.FAILED)
            raise

        with resolved:
            manifest = resolved.manifest
            report.manifest = manifest
            name = manifest.name

            report.transition(OperationState.VALIDATING)
            try:
                check_conflict(manifest, state.extensions)
            except ExtensionError:
                report.transition(OperationState.FAILED)
                raise

            previous = state.get_extension(name)
            old_manifest = None
            if previous is not None:
                # read before store() overwrites the stored copy
                old_manifest = self.storage.load_manifest(name)

            try:
                ext_dir = self.storage.store(name, resolved.root)
            except OSError as e:
                report.transition(OperationState.FAILED)
                raise ExtensionError(f"Failed to store extension '{name}': {e}")

            restore_if_failed: set[str] = set()
            # Skill files rewritten below lose the blocks other extensions put there
            rewritten = set(manifest.replaced_ids)
            if previous is not None:
                rewritten.update(previous.owned_replacements)
                report.previous_version = previous.version
                restore_if_failed = self._release_previous(
                    state, previous, old_manifest, manifest, report
                )

        report.transition(OperationState.INSTALLING)
        committed = self._install_replacements(state, manifest, ext_dir, report)

        # Slots emptied while releasing the previous version must not stay empty
        lost = (restore_if_failed & set(report.failed_replacements)) - set(committed)
        if lost:
            self._restore(
                state, compute_restoration(lost, state.other_extensions(name), self.catalog), report
            )

        self._install_custom_skills(state, manifest, ext_dir, report)

        report.transition(OperationState.RECORDING)
        state.upsert_extension(
            ExtensionRecord(
                name=name,
                source=source,
                version=manifest.version,
                owned_replacements=committed,
            )
        )
        self.store.save(state)
        report.add("record", StepStatus.OK, f"{name} v{manifest.version}")

        report.transition(OperationState.INJECTING)
        for agent in state.agents:
            count = self.injections.apply_all(name, agent, manifest, ext_dir)
            report.injections += count
            if count:
                report.add("inject", StepStatus.OK, f"{count} injection(s)", agent.id)
        self.reapply_injections(state, state.other_extensions(name), rewritten)

        report.server_configs = self._apply_server_configs(state, manifest, ext_dir, report)

        report.transition(OperationState.DONE)
        return report

    def _release_previous(
        self,
        state: ProjectState,
        previous: ExtensionRecord,
        old_manifest: ExtensionManifest | None,
        manifest: ExtensionManifest,
        report: InstallReport,
    ) -> set[str]:
        """Undo the effects of the installed version before upgrading.

        Uses the manifest of the previous version as it was stored before
        the new tree replaced it, never the new one.

        Returns:
            Previously owned ids that the new manifest claims again; they
            are empty until the new replacement installs.
        """
        if old_manifest is None:
            report.add(
                "release-previous",
                StepStatus.WARNING,
                f"stored manifest of {previous.name} unreadable; scanning for markers",
            )

        old_custom: list[str] = []
        dropped_keys: list[str] = []
        if old_manifest is not None:
            new_custom = {skill_id_for(p) for p in manifest.custom_skills}
            old_custom = [
                skill_id
                for skill_id in (skill_id_for(p) for p in old_manifest.custom_skills)
                if skill_id not in new_custom and not self.catalog.contains(skill_id)
            ]
            new_keys = {spec.key for spec in manifest.server_configs}
            dropped_keys = [
                spec.key for spec in old_manifest.server_configs if spec.key not in new_keys
            ]

        previously_owned = set(previous.owned_replacements)
        released = previously_owned - manifest.replaced_ids
        restore = compute_restoration(
            released, state.other_extensions(previous.name), self.catalog
        )
        orphaned = sorted(released - restore)

        for agent in state.agents:
            if old_manifest is not None:
                self.injections.strip_all(previous.name, agent, old_manifest)
            else:
                self.injections.strip_by_name(previous.name, agent)

            installer = self.installer_for(agent)
            installer.remove(previous.owned_replacements)
            agent.drop_skills(orphaned)
            if old_custom:
                installer.remove(old_custom)
                agent.drop_skills(old_custom)

            if dropped_keys:
                try:
                    self.server_configs.remove(agent.id, dropped_keys)
                except OSError as e:
                    report.add("server-config", StepStatus.FAILED, str(e), agent.id)

        # The record is being replaced; it no longer holds anything
        previous.owned_replacements = []
        self._restore(state, restore, report)
        report.add("release-previous", StepStatus.OK, f"v{previous.version}")
        return previously_owned & manifest.replaced_ids

    def _install_replacements(
        self,
        state: ProjectState,
        manifest: ExtensionManifest,
        ext_dir: Path,
        report: InstallReport,
    ) -> list[str]:
        """Install replacement skills on every agent, all or nothing per id.

        Returns:
            Base skill ids installed on every agent.
        """
        committed: list[str] = []
        if not manifest.replaces:
            return committed

        if not state.agents:
            for base_id in manifest.replaces.values():
                report.add("replace", StepStatus.SKIPPED, f"{base_id}: no agents configured")
            return committed

        for path, base_id in manifest.replaces.items():
            source_dir = ext_dir / path
            succeeded = [
                agent
                for agent in state.agents
                if self.installer_for(agent).install(source_dir, base_id)
            ]

            if len(succeeded) == len(state.agents):
                committed.append(base_id)
                for agent in state.agents:
                    agent.add_skills([base_id])
                report.replaced.append(base_id)
                report.add("replace", StepStatus.OK, f"{base_id} <- {path}")
                continue

            report.failed_replacements.append(base_id)
            if not succeeded:
                report.add("replace", StepStatus.FAILED, f"{base_id}: failed on every agent")
                continue

            report.transition(OperationState.ROLLING_BACK)
            for agent in succeeded:
                installer = self.installer_for(agent)
                installer.remove([base_id])
                if self.catalog.contains(base_id) and not installer.install_base(base_id):
                    report.add(
                        "rollback", StepStatus.FAILED, f"could not restore {base_id}", agent.id
                    )
            report.add(
                "replace",
                StepStatus.ROLLED_BACK,
                f"{base_id}: installed on {len(succeeded)} of {len(state.agents)} agents",
            )
            report.transition(OperationState.INSTALLING)

        return committed

    def _install_custom_skills(
        self,
        state: ProjectState,
        manifest: ExtensionManifest,
        ext_dir: Path,
        report: InstallReport,
    ) -> None:
        """Install the extension's own skills; failures are excluded, not fatal."""
        for agent in state.agents:
            installer = self.installer_for(agent)
            installed: list[str] = []
            for path in manifest.custom_skills:
                skill_id = skill_id_for(path)
                if self.catalog.contains(skill_id):
                    report.add(
                        "skill",
                        StepStatus.FAILED,
                        f"{skill_id} is a base skill; declare it under 'replaces'",
                        agent.id,
                    )
                    continue
                if state.get_remote_skill(skill_id) is not None:
                    report.add(
                        "skill",
                        StepStatus.FAILED,
                        f"{skill_id} is already installed as a remote skill",
                        agent.id,
                    )
                    continue
                if installer.install(ext_dir / path, skill_id):
                    installed.append(skill_id)
                else:
                    report.add("skill", StepStatus.FAILED, skill_id, agent.id)

            agent.add_skills(installed)
            report.installed_skills[agent.id] = installed
            if installed:
                report.add("skill", StepStatus.OK, ", ".join(installed), agent.id)

    def _apply_server_configs(
        self,
        state: ProjectState,
        manifest: ExtensionManifest,
        ext_dir: Path,
        report: OperationReport,
    ) -> list[str]:
        configured: list[str] = []
        if not manifest.server_configs:
            return configured

        for agent in state.agents:
            try:
                keys = self.server_configs.apply(agent.id, ext_dir, manifest)
            except OSError as e:
                report.add("server-config", StepStatus.FAILED, str(e), agent.id)
                continue
            for key in keys:
                if key not in configured:
                    configured.append(key)
        if configured:
            report.add("server-config", StepStatus.OK, ", ".join(configured))
        return configured

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self) -> UpdateReport:
        """Refresh base skills and re-apply every extension on top of them.

        Replaced skills are never overwritten by the base refresh. An
        extension whose stored manifest is unreadable, or that no longer
        declares a replacement, gives that replacement up and the base skill
        is restored.

        Returns:
            UpdateReport describing every step.
        """
        report = UpdateReport(operation="update")
        state = self.store.load().snapshot()
        available = self.catalog.available()
        previous_catalog = set(state.base_skills)

        report.transition(OperationState.INSTALLING)
        replaced = owned_ids(state.extensions)
        report.skipped_replaced = sorted(replaced)
        remote = {record.name for record in state.remote_skills}
        to_install = [s for s in available if s not in replaced and s not in remote]
        for skill_id in sorted(remote.intersection(available)):
            report.add("base-skills", StepStatus.WARNING, f"{skill_id}: kept remote skill")

        for agent in state.agents:
            if previous_catalog:
                previous_base = [s for s in agent.installed_skills if s in previous_catalog]
            else:
                previous_base, _ = self.catalog.partition(agent.installed_skills)
            added = [s for s in available if s not in previous_base]
            removed = [
                s
                for s in previous_base
                if s not in available and s not in replaced and s not in remote
            ]
            report.added_skills[agent.id] = added
            report.removed_skills[agent.id] = removed

            installer = self.installer_for(agent)
            if removed:
                installer.remove(removed)
                agent.drop_skills(removed)

            installed = installer.install_base_skills(to_install)
            agent.add_skills(installed)
            failed = [s for s in to_install if s not in installed]
            if failed:
                report.add("base-skills", StepStatus.FAILED, ", ".join(failed), agent.id)
            else:
                report.add("base-skills", StepStatus.OK, f"{len(installed)} skill(s)", agent.id)

        manifests: dict[str, ExtensionManifest | None] = {}
        released: set[str] = set()
        for record in state.extensions:
            manifest = self.storage.load_manifest(record.name)
            manifests[record.name] = manifest
            if not record.owned_replacements:
                continue

            if manifest is None or not manifest.replaces:
                report.add(
                    "replacements",
                    StepStatus.WARNING,
                    f"{record.name}: manifest missing; restoring "
                    + ", ".join(record.owned_replacements),
                )
                released.update(record.owned_replacements)
                record.owned_replacements = []
                continue

            declared = manifest.replaced_ids
            orphaned = [s for s in record.owned_replacements if s not in declared]
            if orphaned:
                report.add(
                    "replacements",
                    StepStatus.WARNING,
                    f"{record.name} no longer replaces " + ", ".join(orphaned),
                )
                released.update(orphaned)
                record.owned_replacements = [
                    s for s in record.owned_replacements if s in declared
                ]

            ext_dir = self.storage.path(record.name)
            for path, base_id in manifest.replaces.items():
                if base_id not in record.owned_replacements:
                    continue
                for agent in state.agents:
                    if not self.installer_for(agent).install(ext_dir / path, base_id):
                        report.add(
                            "replacements",
                            StepStatus.FAILED,
                            f"{record.name}: could not reinstall {base_id}",
                            agent.id,
                        )

        report.released = sorted(released)
        restore = compute_restoration(released, state.extensions, self.catalog)
        orphaned = sorted(released - restore)
        if orphaned:
            # no base skill to fall back to
            for agent in state.agents:
                self.installer_for(agent).remove(orphaned)
                agent.drop_skills(orphaned)
            report.add("replacements", StepStatus.OK, "removed " + ", ".join(orphaned))
        report.restored = self._restore(state, restore, report)

        report.transition(OperationState.INJECTING)
        for record in state.extensions:
            manifest = manifests.get(record.name)
            if manifest is None:
                continue
            for agent in state.agents:
                report.injections += self.injections.apply_all(
                    record.name, agent, manifest, self.storage.path(record.name)
                )
        if report.injections:
            report.add("inject", StepStatus.OK, f"re-applied {report.injections} injection(s)")

        report.transition(OperationState.RECORDING)
        state.version = self.version
        state.base_skills = available
        self.store.save(state)

        report.transition(OperationState.DONE)
        return report

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    def remove(self, name: str) -> RemoveReport:
        """Remove an installed extension and undo its effects.

        File effects are undone before the record is deleted, so re-running
        remove after a failure repeats only no-op steps.

        Args:
            name: Extension name.

        Returns:
            RemoveReport describing every step.

        Raises:
            ExtensionNotInstalledError: If no record exists for the name.
        """
        report = RemoveReport(operation="remove", target=name)
        state = self.store.load().snapshot()

        report.transition(OperationState.VALIDATING)
        record = state.get_extension(name)
        if record is None:
            report.transition(OperationState.FAILED)
            raise ExtensionNotInstalledError(name)

        manifest = self.storage.load_manifest(name)
        if manifest is None:
            report.manifest_missing = True
            report.add(
                "manifest",
                StepStatus.WARNING,
                f"stored manifest of {name} unreadable; scanning for markers",
            )

        report.transition(OperationState.INSTALLING)
        custom_ids: list[str] = []
        if manifest is not None:
            custom_ids = [
                skill_id
                for skill_id in (skill_id_for(p) for p in manifest.custom_skills)
                if not self.catalog.contains(skill_id)
            ]

        for agent in state.agents:
            if manifest is not None:
                self.injections.strip_all(name, agent, manifest)
            else:
                self.injections.strip_by_name(name, agent)

            installer = self.installer_for(agent)
            installer.remove(record.owned_replacements)

            removed = installer.remove(custom_ids)
            agent.drop_skills(custom_ids)
            report.removed_skills[agent.id] = removed
            if removed:
                report.add("skill", StepStatus.OK, "removed " + ", ".join(removed), agent.id)

        remaining = state.other_extensions(name)
        restore = compute_restoration(record.owned_replacements, remaining, self.catalog)
        for agent in state.agents:
            agent.drop_skills([s for s in record.owned_replacements if s not in restore])
        report.restored = self._restore(state, restore, report)
        self.reapply_injections(state, remaining, set(report.restored))

        if manifest is not None and manifest.server_configs:
            keys = [spec.key for spec in manifest.server_configs]
            for agent in state.agents:
                try:
                    for key in self.server_configs.remove(agent.id, keys):
                        if key not in report.server_configs:
                            report.server_configs.append(key)
                except OSError as e:
                    report.add("server-config", StepStatus.FAILED, str(e), agent.id)

        self.storage.remove(name)

        report.transition(OperationState.RECORDING)
        state.remove_extension(name)
        self.store.save(state)
        report.add("record", StepStatus.OK, f"removed {name}")

        report.transition(OperationState.DONE)
        return report

    # ------------------------------------------------------------------

    def _restore(
        self, state: ProjectState, skill_ids: set[str], report: OperationReport
    ) -> list[str]:
        """Reinstall base skills on every agent.

        Returns:
            Ids restored on every agent.
        """
        restored: list[str] = []
        for skill_id in sorted(skill_ids):
            everywhere = True
            for agent in state.agents:
                if self.installer_for(agent).install_base(skill_id):
                    agent.add_skills([skill_id])
                else:
                    everywhere = False
                    report.add("restore", StepStatus.FAILED, skill_id, agent.id)
            if everywhere:
                restored.append(skill_id)
        if restored:
            report.add("restore", StepStatus.OK, ", ".join(restored))
        return restored

    def reapply_injections(
        self, state: ProjectState, records: list[ExtensionRecord], targets: set[str]
    ) -> int:
        """Re-apply injections of records that target freshly written skills.

        Returns:
            Number of directives applied.
        """
        if not targets:
            return 0

        count = 0
        for record in records:
            manifest = self.storage.load_manifest(record.name)
            if manifest is None:
                continue
            if not any(injection.target in targets for injection in manifest.injections):
                continue
            for agent in state.agents:
                count += self.injections.apply_all(
                    record.name, agent, manifest, self.storage.path(record.name)
                )
        return count
