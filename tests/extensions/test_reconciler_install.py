"""
Tests for installing extensions through the reconciler.
"""

import json
import shutil

import pytest

from extensions.errors import (
    ExtensionError,
    ReplacementConflictError,
    SourceResolutionError,
    StateError,
)
from extensions.reconciler import ExtensionReconciler, OperationState, StepStatus

AGENT_SKILL_DIRS = {"claude": ".claude/skills", "cursor": ".cursor/skills"}


def skill_text(project_dir, agent_id, skill_id):
    return (project_dir / AGENT_SKILL_DIRS[agent_id] / skill_id / "SKILL.md").read_text()


def installed_skills(reconciler, agent_id):
    state = reconciler.store.load()
    return next(agent.installed_skills for agent in state.agents if agent.id == agent_id)


class TestInstall:
    """Test a first install across two agents."""

    def test_replaces_base_skill_on_every_agent(self, reconciler, hello_commit, project_dir):
        report = reconciler.install(str(hello_commit))

        assert report.ok
        assert report.replaced == ["aif-commit"]
        for agent_id in AGENT_SKILL_DIRS:
            assert skill_text(project_dir, agent_id, "aif-commit").startswith("# Hello Commit")

    def test_installs_custom_skills(self, reconciler, hello_commit, project_dir):
        report = reconciler.install(str(hello_commit))

        assert report.installed_skills == {"claude": ["hello-lint"], "cursor": ["hello-lint"]}
        state = reconciler.store.load()
        for agent in state.agents:
            assert "hello-lint" in agent.installed_skills
        assert skill_text(project_dir, "cursor", "hello-lint").startswith("# Hello Lint")

    def test_applies_injections(self, reconciler, hello_commit, project_dir):
        report = reconciler.install(str(hello_commit))

        assert report.injections == 2
        for agent_id in AGENT_SKILL_DIRS:
            text = skill_text(project_dir, agent_id, "aif-plan")
            assert "<!-- skillfactory:hello-commit:aif-plan:append:start -->" in text
            assert "Always link the ticket in the plan." in text

    def test_records_extension(self, reconciler, hello_commit):
        reconciler.install(str(hello_commit))

        record = reconciler.store.load().get_extension("hello-commit")
        assert record.version == "1.0.0"
        assert record.source == str(hello_commit)
        assert record.owned_replacements == ["aif-commit"]
        assert reconciler.storage.load_manifest("hello-commit").name == "hello-commit"

    def test_state_transitions(self, reconciler, hello_commit):
        report = reconciler.install(str(hello_commit))

        assert report.history == [
            OperationState.RESOLVING,
            OperationState.VALIDATING,
            OperationState.INSTALLING,
            OperationState.RECORDING,
            OperationState.INJECTING,
            OperationState.DONE,
        ]

    def test_persists_state_once(self, reconciler, hello_commit, monkeypatch):
        saved = []
        original_save = reconciler.store.save

        def counting_save(state):
            saved.append(state)
            original_save(state)

        monkeypatch.setattr(reconciler.store, "save", counting_save)
        reconciler.install(str(hello_commit))

        assert len(saved) == 1

    def test_requires_initialized_project(self, tmp_path, catalog, hello_commit):
        reconciler = ExtensionReconciler(tmp_path / "bare", catalog=catalog)
        with pytest.raises(StateError):
            reconciler.install(str(hello_commit))

    def test_unresolvable_source_touches_nothing(self, reconciler, project_dir, snapshot_tree):
        before = snapshot_tree(project_dir)

        with pytest.raises(SourceResolutionError):
            reconciler.install("./does-not-exist")

        assert snapshot_tree(project_dir) == before

    def test_custom_skill_cannot_shadow_base_skill(self, reconciler, make_extension, project_dir):
        source = make_extension(
            {"name": "sneaky", "version": "1", "skills": ["skills/aif-plan"]},
            {"skills/aif-plan/SKILL.md": "# Not the plan\n"},
        )

        report = reconciler.install(str(source))

        assert report.installed_skills == {"claude": [], "cursor": []}
        assert any(s.status == StepStatus.FAILED for s in report.steps)
        assert skill_text(project_dir, "claude", "aif-plan").startswith("---\nname: aif-plan")

    def test_server_configs(self, reconciler, make_extension, project_dir):
        source = make_extension(
            {
                "name": "db-tools",
                "version": "1",
                "server_configs": [{"key": "db", "template": "servers/db.json"}],
            },
            {"servers/db.json": json.dumps({"command": "db-server"})},
        )

        report = reconciler.install(str(source))

        assert report.server_configs == ["db"]
        claude = json.loads((project_dir / ".mcp.json").read_text())
        cursor = json.loads((project_dir / ".cursor" / "mcp.json").read_text())
        assert claude["mcpServers"]["db"] == {"command": "db-server"}
        assert cursor["mcpServers"]["db"] == {"command": "db-server"}


class TestReplacementConflicts:
    """Test the single-owner rule during install."""

    def test_conflict_leaves_project_untouched(
        self, reconciler, hello_commit, make_extension, project_dir, snapshot_tree
    ):
        reconciler.install(str(hello_commit))
        rival = make_extension(
            {
                "name": "rival-commit",
                "version": "1",
                "skills": ["skills/commit"],
                "replaces": {"skills/commit": "aif-commit"},
                "injections": [{"target": "aif-plan", "file": "note.md"}],
            },
            {"skills/commit/SKILL.md": "# Rival\n", "note.md": "rival note\n"},
        )
        before = snapshot_tree(project_dir)

        with pytest.raises(ReplacementConflictError, match="hello-commit"):
            reconciler.install(str(rival))

        assert snapshot_tree(project_dir) == before

    def test_reinstall_same_extension_is_allowed(self, reconciler, hello_commit):
        reconciler.install(str(hello_commit))
        report = reconciler.install(str(hello_commit))

        assert report.ok
        assert report.previous_version == "1.0.0"
        assert reconciler.store.load().get_extension("hello-commit").owned_replacements == [
            "aif-commit"
        ]


class TestPartialFailure:
    """Test rollback when a replacement installs on only some agents."""

    def test_partial_success_rolls_back(
        self, reconciler, hello_commit, failures, project_dir, catalog_dir
    ):
        failures["cursor"] = {"aif-commit"}

        report = reconciler.install(str(hello_commit))

        assert report.ok
        assert report.replaced == []
        assert report.failed_replacements == ["aif-commit"]
        assert OperationState.ROLLING_BACK in report.history
        assert [s.status for s in report.steps if s.step == "replace"] == [StepStatus.ROLLED_BACK]

        base = (catalog_dir / "aif-commit" / "SKILL.md").read_text()
        for agent_id in AGENT_SKILL_DIRS:
            assert skill_text(project_dir, agent_id, "aif-commit") == base

        record = reconciler.store.load().get_extension("hello-commit")
        assert record.owned_replacements == []

    def test_zero_success_reports_failure(self, reconciler, hello_commit, failures, catalog_dir, project_dir):
        failures["claude"] = {"aif-commit"}
        failures["cursor"] = {"aif-commit"}

        report = reconciler.install(str(hello_commit))

        assert report.failed_replacements == ["aif-commit"]
        assert OperationState.ROLLING_BACK not in report.history
        assert [s.status for s in report.steps if s.step == "replace"] == [StepStatus.FAILED]
        base = (catalog_dir / "aif-commit" / "SKILL.md").read_text()
        assert skill_text(project_dir, "claude", "aif-commit") == base

    def test_failed_custom_skill_is_excluded(self, reconciler, hello_commit, failures):
        failures["cursor"] = {"hello-lint"}

        report = reconciler.install(str(hello_commit))

        assert report.installed_skills == {"claude": ["hello-lint"], "cursor": []}
        assert "hello-lint" not in installed_skills(reconciler, "cursor")


class TestUpgrade:
    """Test re-installing an extension with a changed manifest."""

    @pytest.fixture
    def hello_v2(self, make_extension):
        return make_extension(
            {
                "name": "hello-commit",
                "version": "2.0.0",
                "skills": ["skills/review"],
                "replaces": {"skills/review": "aif-review"},
                "injections": [
                    {"target": "aif-plan", "position": "prepend", "file": "injections/plan.md"}
                ],
            },
            {
                "skills/review/SKILL.md": "# Hello Review\n",
                "injections/plan.md": "Plan v2 note.\n",
            },
            dirname="hello-v2",
        )

    def test_upgrade_releases_and_claims(
        self, reconciler, hello_commit, hello_v2, project_dir, catalog_dir
    ):
        reconciler.install(str(hello_commit))

        report = reconciler.install(str(hello_v2))

        assert report.previous_version == "1.0.0"
        assert report.replaced == ["aif-review"]
        base_commit = (catalog_dir / "aif-commit" / "SKILL.md").read_text()
        for agent_id in AGENT_SKILL_DIRS:
            assert skill_text(project_dir, agent_id, "aif-commit") == base_commit
            assert skill_text(project_dir, agent_id, "aif-review") == "# Hello Review\n"

        record = reconciler.store.load().get_extension("hello-commit")
        assert record.version == "2.0.0"
        assert record.owned_replacements == ["aif-review"]

    def test_upgrade_replaces_injections(self, reconciler, hello_commit, hello_v2, project_dir):
        reconciler.install(str(hello_commit))
        reconciler.install(str(hello_v2))

        text = skill_text(project_dir, "claude", "aif-plan")
        assert "Always link the ticket" not in text
        assert "hello-commit:aif-plan:append" not in text
        assert text.count("hello-commit:aif-plan:prepend:start") == 1

    def test_upgrade_removes_dropped_custom_skills(self, reconciler, hello_commit, hello_v2, project_dir):
        reconciler.install(str(hello_commit))
        reconciler.install(str(hello_v2))

        assert not (project_dir / ".claude/skills/hello-lint").exists()
        assert "hello-lint" not in installed_skills(reconciler, "claude")

    def test_reclaimed_replacement_failure_restores_base(
        self, reconciler, hello_commit, failures, project_dir, catalog_dir
    ):
        reconciler.install(str(hello_commit))
        failures["claude"] = {"aif-commit"}
        failures["cursor"] = {"aif-commit"}

        report = reconciler.install(str(hello_commit))

        assert report.failed_replacements == ["aif-commit"]
        assert reconciler.store.load().get_extension("hello-commit").owned_replacements == []
        base = (catalog_dir / "aif-commit" / "SKILL.md").read_text()
        for agent_id in AGENT_SKILL_DIRS:
            assert skill_text(project_dir, agent_id, "aif-commit") == base

    def test_failed_store_keeps_installed_version(
        self, reconciler, hello_commit, hello_v2, project_dir, snapshot_tree, monkeypatch
    ):
        reconciler.install(str(hello_commit))
        before = snapshot_tree(project_dir)

        def full_disk(name, source_dir):
            raise OSError("No space left on device")

        monkeypatch.setattr(reconciler.storage, "store", full_disk)

        with pytest.raises(ExtensionError, match="Failed to store"):
            reconciler.install(str(hello_v2))

        assert snapshot_tree(project_dir) == before
        record = reconciler.store.load().get_extension("hello-commit")
        assert record.version == "1.0.0"
        assert record.owned_replacements == ["aif-commit"]

    def test_upgrade_removes_dropped_server_configs(self, reconciler, make_extension, project_dir):
        v1 = make_extension(
            {
                "name": "db-tools",
                "version": "1",
                "server_configs": [
                    {"key": "db", "template": "servers/db.json"},
                    {"key": "cache", "template": "servers/cache.json"},
                ],
            },
            {
                "servers/db.json": json.dumps({"command": "db-server"}),
                "servers/cache.json": json.dumps({"command": "cache-server"}),
            },
            dirname="db-tools-v1",
        )
        v2 = make_extension(
            {
                "name": "db-tools",
                "version": "2",
                "server_configs": [{"key": "db", "template": "servers/db.json"}],
            },
            {"servers/db.json": json.dumps({"command": "db-server", "args": ["--v2"]})},
            dirname="db-tools-v2",
        )
        reconciler.install(str(v1))

        report = reconciler.install(str(v2))

        assert report.server_configs == ["db"]
        for settings in (project_dir / ".mcp.json", project_dir / ".cursor" / "mcp.json"):
            servers = json.loads(settings.read_text())["mcpServers"]
            assert "cache" not in servers
            assert servers["db"]["args"] == ["--v2"]

        reconciler.remove("db-tools")
        assert json.loads((project_dir / ".mcp.json").read_text())["mcpServers"] == {}

    def test_released_skill_without_base_is_removed(
        self, reconciler, hello_commit, hello_v2, project_dir, catalog_dir
    ):
        reconciler.install(str(hello_commit))
        shutil.rmtree(catalog_dir / "aif-commit")

        report = reconciler.install(str(hello_v2))

        assert report.ok
        for agent_id in AGENT_SKILL_DIRS:
            assert not (project_dir / AGENT_SKILL_DIRS[agent_id] / "aif-commit").exists()
            assert "aif-commit" not in installed_skills(reconciler, agent_id)
