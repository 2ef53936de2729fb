"""
Tests for durable extension storage.
"""

import pytest

from extensions.storage import ExtensionStorage


@pytest.fixture
def storage(project_dir):
    return ExtensionStorage(project_dir)


class TestExtensionStorage:
    """Test copying, loading and removing stored extensions."""

    def test_store_copies_tree(self, storage, hello_commit, project_dir):
        target = storage.store("hello-commit", hello_commit)

        assert target == project_dir / ".skillfactory" / "extensions" / "hello-commit"
        assert (target / "skills" / "commit" / "SKILL.md").exists()
        assert storage.load_manifest("hello-commit").version == "1.0.0"

    def test_store_skips_vcs_and_caches(self, storage, make_extension):
        source = make_extension(
            {"name": "x", "version": "1"},
            {".git/HEAD": "ref", "__pycache__/a.pyc": "", "commands/run.py": ""},
        )
        target = storage.store("x", source)

        assert not (target / ".git").exists()
        assert not (target / "__pycache__").exists()
        assert (target / "commands" / "run.py").exists()

    def test_store_replaces_previous_copy(self, storage, make_extension):
        first = make_extension({"name": "x", "version": "1"}, {"old.md": "old"}, dirname="v1")
        second = make_extension({"name": "x", "version": "2"}, {"new.md": "new"}, dirname="v2")

        storage.store("x", first)
        target = storage.store("x", second)

        assert not (target / "old.md").exists()
        assert storage.load_manifest("x").version == "2"

    def test_load_manifest_missing(self, storage):
        assert storage.load_manifest("nothing") is None

    def test_load_manifest_corrupted(self, storage, hello_commit):
        target = storage.store("hello-commit", hello_commit)
        (target / "manifest.yaml").write_text("name: [broken")

        assert storage.load_manifest("hello-commit") is None

    def test_remove_scoped(self, storage, make_extension):
        source = make_extension({"name": "@acme/kit", "version": "1"})
        storage.store("@acme/kit", source)

        assert storage.remove("@acme/kit")
        assert not (storage.root / "@acme").exists()
        assert not storage.remove("@acme/kit")
