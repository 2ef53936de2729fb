"""Extension manifest schema for skillfactory extensions.

Defines the structure and validation for extension manifests
(manifest.yaml, or extension.json as a fallback).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

import yaml

from extensions.errors import ManifestError

MANIFEST_FILES = ("manifest.yaml", "manifest.yml", "extension.json")

# Letters, digits and _ - . @ / (scoped names such as @acme/review-kit)
_NAME_RE = re.compile(r"^[A-Za-z0-9_.@/-]+$")
_SKILL_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class InjectionPosition(str, Enum):
    """Where an injection block goes inside the target skill file."""

    APPEND = "append"
    PREPEND = "prepend"


@dataclass(frozen=True)
class InjectionDirective:
    """Textual addition to an installed skill.

    Attributes:
        target: Skill id whose SKILL.md receives the block.
        position: append or prepend.
        file: Path of the content file, relative to the extension root.
    """

    target: str
    position: InjectionPosition
    file: str


@dataclass(frozen=True)
class CommandSpec:
    """CLI command contributed by an extension."""

    name: str
    module: str
    description: str = ""


@dataclass(frozen=True)
class AgentSpec:
    """Sub-agent definition shipped by an extension."""

    name: str
    display_name: str = ""
    file: str | None = None


@dataclass(frozen=True)
class ServerConfigSpec:
    """Server configuration fragment merged into agent settings.

    Attributes:
        key: Entry name inside the agent's server table.
        template: JSON template path, relative to the extension root.
        instruction: Optional hint shown to the user after install.
    """

    key: str
    template: str
    instruction: str | None = None


@dataclass
class ExtensionManifest:
    """Extension manifest containing metadata and declared contributions.

    Attributes:
        name: Unique extension identifier.
        version: Version string.
        description: Short description of what the extension does.
        commands: CLI commands provided by the extension.
        agents: Sub-agent definitions provided by the extension.
        injections: Text blocks injected into installed skills.
        skills: Skill directories (relative paths) shipped by the extension.
        replaces: Mapping of extension skill path to the base skill id it shadows.
        server_configs: Server configuration fragments for agent settings.
    """

    name: str
    version: str
    description: str = ""
    commands: list[CommandSpec] = field(default_factory=list)
    agents: list[AgentSpec] = field(default_factory=list)
    injections: list[InjectionDirective] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    replaces: dict[str, str] = field(default_factory=dict)
    server_configs: list[ServerConfigSpec] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate the manifest after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate manifest fields."""
        if not self.name:
            raise ManifestError("Extension name is required")
        if not _NAME_RE.match(self.name):
            raise ManifestError(
                f"Invalid extension name: {self.name}. "
                "Use only letters, numbers and _ - . @ /"
            )
        if ".." in self.name or self.name.startswith("/"):
            raise ManifestError(f"Invalid extension name: {self.name}")

        if not self.version:
            raise ManifestError("Extension version is required")

        for path in self.skills:
            _check_relative(path, "skill path")

        seen_bases: dict[str, str] = {}
        for path, base_id in self.replaces.items():
            _check_relative(path, "replacement path")
            if not _SKILL_ID_RE.match(base_id):
                raise ManifestError(f"Invalid replaced skill id: {base_id!r}")
            if base_id in seen_bases:
                raise ManifestError(
                    f"Skill '{base_id}' is replaced twice "
                    f"({seen_bases[base_id]} and {path})"
                )
            seen_bases[base_id] = path

        for injection in self.injections:
            if not _SKILL_ID_RE.match(injection.target):
                raise ManifestError(
                    f"Invalid injection target: {injection.target!r}"
                )
            _check_relative(injection.file, "injection file")

        for command in self.commands:
            if not command.name:
                raise ManifestError("Command name is required")
            _check_relative(command.module, "command module")

        for server in self.server_configs:
            if not server.key:
                raise ManifestError("Server config key is required")
            _check_relative(server.template, "server config template")

    @classmethod
    def from_dir(cls, ext_dir: Path) -> ExtensionManifest:
        """Load the manifest of an extension directory.

        Args:
            ext_dir: Extension root directory.

        Returns:
            Parsed ExtensionManifest.

        Raises:
            ManifestError: If no manifest file exists or it is invalid.
        """
        for filename in MANIFEST_FILES:
            path = ext_dir / filename
            if path.exists():
                if path.suffix == ".json":
                    return cls.from_json(path)
                return cls.from_yaml(path)
        raise ManifestError(f"Manifest not found in {ext_dir}")

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> ExtensionManifest:
        """Load manifest from a YAML file.

        Args:
            yaml_path: Path to manifest.yaml file.

        Returns:
            Parsed ExtensionManifest.

        Raises:
            ManifestError: If file is missing or invalid.
        """
        if not yaml_path.exists():
            raise ManifestError(f"Manifest not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML in {yaml_path}: {e}")

        if not isinstance(data, dict):
            raise ManifestError(f"Manifest must be a YAML mapping: {yaml_path}")

        return cls.from_dict(data)

    @classmethod
    def from_json(cls, json_path: Path) -> ExtensionManifest:
        """Load manifest from an extension.json file."""
        try:
            data = json.loads(json_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(f"Invalid JSON in {json_path}: {e}")

        if not isinstance(data, dict):
            raise ManifestError(f"Manifest must be a JSON object: {json_path}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtensionManifest:
        """Create manifest from a dictionary.

        Args:
            data: Dictionary containing manifest fields.

        Returns:
            Parsed ExtensionManifest.

        Raises:
            ManifestError: If required fields are missing or invalid.
        """
        try:
            injections = [
                InjectionDirective(
                    target=str(item["target"]),
                    position=InjectionPosition(item.get("position", "append")),
                    file=str(item["file"]),
                )
                for item in data.get("injections") or []
            ]
            commands = [
                CommandSpec(
                    name=str(item["name"]),
                    module=str(item["module"]),
                    description=str(item.get("description", "")),
                )
                for item in data.get("commands") or []
            ]
            agents = [
                AgentSpec(
                    name=str(item["name"]),
                    display_name=str(
                        item.get("display_name") or item.get("displayName") or item["name"]
                    ),
                    file=item.get("file"),
                )
                for item in data.get("agents") or []
            ]
            # mcpServers is the key used by older manifests
            raw_servers = data.get("server_configs") or data.get("mcpServers") or []
            server_configs = [
                ServerConfigSpec(
                    key=str(item["key"]),
                    template=str(item["template"]),
                    instruction=item.get("instruction"),
                )
                for item in raw_servers
            ]

            replaces = data.get("replaces") or {}
            if not isinstance(replaces, dict):
                raise ManifestError("'replaces' must be a mapping of path to skill id")

            return cls(
                name=str(data.get("name") or ""),
                version=str(data.get("version") or ""),
                description=str(data.get("description") or ""),
                commands=commands,
                agents=agents,
                injections=injections,
                skills=[str(s) for s in data.get("skills") or []],
                replaces={str(k): str(v) for k, v in replaces.items()},
                server_configs=server_configs,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise ManifestError(f"Invalid manifest data: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to dictionary.

        Returns:
            Dictionary representation of the manifest.
        """
        result: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
        }

        if self.description:
            result["description"] = self.description
        if self.commands:
            result["commands"] = [
                {"name": c.name, "module": c.module, "description": c.description}
                for c in self.commands
            ]
        if self.agents:
            result["agents"] = [
                {"name": a.name, "display_name": a.display_name, "file": a.file}
                for a in self.agents
            ]
        if self.injections:
            result["injections"] = [
                {"target": i.target, "position": i.position.value, "file": i.file}
                for i in self.injections
            ]
        if self.skills:
            result["skills"] = list(self.skills)
        if self.replaces:
            result["replaces"] = dict(self.replaces)
        if self.server_configs:
            result["server_configs"] = [
                {"key": s.key, "template": s.template, "instruction": s.instruction}
                for s in self.server_configs
            ]

        return result

    @property
    def custom_skills(self) -> list[str]:
        """Skill paths installed under their own id (not replacements)."""
        return [path for path in self.skills if path not in self.replaces]

    @property
    def replaced_ids(self) -> set[str]:
        """Base skill ids this manifest claims."""
        return set(self.replaces.values())

    def features(self) -> list[str]:
        """Summarize what the extension provides, for listings."""
        features: list[str] = []
        if self.commands:
            features.append(f"{len(self.commands)} command(s)")
        if self.agents:
            features.append(f"{len(self.agents)} agent(s)")
        if self.injections:
            features.append(f"{len(self.injections)} injection(s)")
        if self.skills:
            features.append(f"{len(self.skills)} skill(s)")
        if self.replaces:
            features.append(f"{len(self.replaces)} replacement(s)")
        if self.server_configs:
            features.append(f"{len(self.server_configs)} server config(s)")
        return features

    def __repr__(self) -> str:
        return (
            f"ExtensionManifest(name={self.name!r}, version={self.version!r})"
        )


def skill_id_for(path: str) -> str:
    """Skill id a custom skill path installs under (its directory name)."""
    return PurePosixPath(path).name


def _check_relative(path: str, what: str) -> None:
    """Reject absolute paths and parent-directory escapes."""
    posix = PurePosixPath(path.replace("\\", "/"))
    if not path or posix.is_absolute() or ".." in posix.parts:
        raise ManifestError(f"Invalid {what}: {path!r}")
