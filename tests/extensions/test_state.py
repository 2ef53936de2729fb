"""
Tests for the project state store.
"""

import json

import pytest

from extensions.errors import StateError
from extensions.state import AgentTarget, ExtensionRecord, ProjectState, StateStore


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path)


@pytest.fixture
def state():
    return ProjectState(
        version="0.1.0",
        agents=[AgentTarget(id="claude", skills_dir=".claude/skills", installed_skills=["aif-plan"])],
        extensions=[
            ExtensionRecord(
                name="hello-commit",
                source="./hello",
                version="1.0.0",
                owned_replacements=["aif-commit"],
            )
        ],
    )


class TestStateStore:
    """Test loading and saving the state file."""

    def test_load_missing(self, store):
        with pytest.raises(StateError, match="skillfactory init"):
            store.load()

    def test_save_and_load(self, store, state):
        store.save(state)
        loaded = store.load()

        assert loaded == state
        assert store.exists()

    def test_save_leaves_no_temp_files(self, store, state, tmp_path):
        store.save(state)
        store.save(state)

        assert [p.name for p in tmp_path.iterdir()] == [".skillfactory.json"]

    def test_invalid_json(self, store, tmp_path):
        (tmp_path / ".skillfactory.json").write_text("{not json")
        with pytest.raises(StateError, match="Invalid state file"):
            store.load()

    def test_reads_camel_case_keys(self, store, tmp_path):
        (tmp_path / ".skillfactory.json").write_text(
            json.dumps(
                {
                    "version": "0.0.9",
                    "agents": [
                        {"id": "claude", "skillsDir": ".claude/skills", "installedSkills": ["a"]}
                    ],
                    "extensions": [
                        {
                            "name": "x",
                            "source": "github:a/b",
                            "version": "1",
                            "replacedSkills": ["aif-commit"],
                        }
                    ],
                }
            )
        )
        state = store.load()

        assert state.agents[0].installed_skills == ["a"]
        assert state.extensions[0].owned_replacements == ["aif-commit"]

    def test_initialize(self, store):
        agents = [AgentTarget(id="cursor", skills_dir=".cursor/skills")]
        store.initialize(agents, "0.1.0", base_skills=["aif-plan"])

        loaded = store.load()
        assert loaded.agents[0].id == "cursor"
        assert loaded.base_skills == ["aif-plan"]


class TestProjectState:
    """Test in-memory state helpers."""

    def test_snapshot_is_independent(self, state):
        copy = state.snapshot()
        copy.extensions[0].owned_replacements.append("aif-plan")
        copy.agents[0].add_skills(["aif-review"])

        assert state.extensions[0].owned_replacements == ["aif-commit"]
        assert state.agents[0].installed_skills == ["aif-plan"]

    def test_upsert_replaces_in_place(self, state):
        state.upsert_extension(ExtensionRecord(name="other", source="s", version="1"))
        state.upsert_extension(ExtensionRecord(name="hello-commit", source="s2", version="2.0.0"))

        assert [r.name for r in state.extensions] == ["hello-commit", "other"]
        assert state.get_extension("hello-commit").version == "2.0.0"

    def test_remove_extension(self, state):
        removed = state.remove_extension("hello-commit")

        assert removed.name == "hello-commit"
        assert state.extensions == []
        assert state.remove_extension("hello-commit") is None

    def test_agent_skill_bookkeeping(self):
        agent = AgentTarget(id="claude", skills_dir=".claude/skills")
        agent.add_skills(["a", "b", "a"])
        agent.drop_skills(["a"])

        assert agent.installed_skills == ["b"]
