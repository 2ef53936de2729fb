"""
Shared fixtures for skillfactory tests
"""

from pathlib import Path

import pytest
import yaml

from extensions.reconciler import ExtensionReconciler
from extensions.sources import SourceResolver
from skills.catalog import BaseSkillCatalog
from skills.installer import SkillInstaller

BASE_SKILLS = {
    "aif-commit": """---
name: aif-commit
description: Write a commit message for staged changes
---

# Commit

Summarize the staged diff in one line.
""",
    "aif-plan": """---
name: aif-plan
description: Plan a feature before coding
---

# Plan

List the files to change and the order of work.
""",
    "aif-review": """# Review

Read the diff and point out bugs.
""",
}


@pytest.fixture
def catalog_dir(tmp_path):
    """Create a base skill library with three skills."""
    library = tmp_path / "library"
    for skill_id, content in BASE_SKILLS.items():
        skill_dir = library / skill_id
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text(content, encoding="utf-8")
    return library


@pytest.fixture
def catalog(catalog_dir):
    return BaseSkillCatalog(catalog_dir)


@pytest.fixture
def project_dir(tmp_path):
    """Create an empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def make_extension(tmp_path):
    """Build an extension source directory from a manifest and file map.

    Usage:
        make_extension({"name": "x", "version": "1.0.0"}, {"skills/a/SKILL.md": "..."})
    """

    def _make(manifest: dict, files: dict[str, str] | None = None, dirname: str | None = None) -> Path:
        root = tmp_path / "sources" / (dirname or manifest["name"].replace("/", "_"))
        root.mkdir(parents=True, exist_ok=True)
        (root / "manifest.yaml").write_text(
            yaml.safe_dump(manifest, sort_keys=False), encoding="utf-8"
        )
        for rel_path, content in (files or {}).items():
            path = root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return root

    return _make


@pytest.fixture
def hello_commit(make_extension):
    """Extension replacing aif-commit and appending a note to aif-plan."""
    return make_extension(
        {
            "name": "hello-commit",
            "version": "1.0.0",
            "description": "Commit messages with ticket ids",
            "skills": ["skills/commit", "skills/hello-lint"],
            "replaces": {"skills/commit": "aif-commit"},
            "injections": [
                {"target": "aif-plan", "position": "append", "file": "injections/plan.md"}
            ],
        },
        {
            "skills/commit/SKILL.md": "# Hello Commit\n\nPrefix every message with the ticket id.\n",
            "skills/hello-lint/SKILL.md": "# Hello Lint\n\nRun the linter.\n",
            "injections/plan.md": "Always link the ticket in the plan.\n",
        },
    )


class FlakyInstaller(SkillInstaller):
    """SkillInstaller that fails to install chosen skill ids from extensions.

    Installs from the base catalog always succeed, so restores still work.
    """

    def __init__(self, *args, fail_ids=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_ids = set(fail_ids)

    def install(self, source_dir, skill_id):
        from_catalog = self.catalog.library_dir in source_dir.parents
        if skill_id in self.fail_ids and not from_catalog:
            return False
        return super().install(source_dir, skill_id)


@pytest.fixture
def failures():
    """Mapping of agent id to skill ids whose install must fail."""
    return {}


@pytest.fixture
def reconciler(project_dir, catalog, failures):
    """Reconciler for a project initialized with claude and cursor."""

    def installer_factory(agent):
        return FlakyInstaller(
            project_dir,
            agent.id,
            agent.skills_dir,
            catalog,
            fail_ids=failures.get(agent.id, ()),
        )

    reconciler = ExtensionReconciler(
        project_dir,
        resolver=SourceResolver(base_dir=project_dir),
        catalog=catalog,
        installer_factory=installer_factory,
        version="0.1.0",
    )
    reconciler.init_project(["claude", "cursor"])
    return reconciler


@pytest.fixture
def snapshot_tree():
    """Return a callable mapping every file under a directory to its bytes."""

    def _snapshot(root: Path) -> dict[str, bytes]:
        return {
            str(path.relative_to(root)): path.read_bytes()
            for path in sorted(root.rglob("*"))
            if path.is_file()
        }

    return _snapshot
