"""Merge extension server configurations into agent settings files.

Agents that support external tool servers read them from a JSON settings
file (for example ``.mcp.json``). Extensions ship JSON templates which are
merged into that file under a key, and removed again by key.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from extensions.manifest import ExtensionManifest
from skills.agents import get_agent_profile

logger = logging.getLogger(__name__)


class ServerConfigMerger:
    """Add and remove server entries in agent settings files."""

    def __init__(self, project_dir: Path):
        self.project_dir = Path(project_dir)

    def apply(self, agent_id: str, ext_dir: Path, manifest: ExtensionManifest) -> list[str]:
        """Merge every server config of a manifest for one agent.

        Args:
            agent_id: Target agent.
            ext_dir: Stored extension directory holding the templates.
            manifest: Extension manifest.

        Returns:
            Keys written to the agent's settings file.
        """
        profile = get_agent_profile(agent_id)
        if not manifest.server_configs or not profile.supports_server_configs:
            return []

        settings_path = self.project_dir / profile.settings_file
        settings = _read_json(settings_path)
        if settings is None:
            return []

        servers = settings.setdefault(profile.settings_key, {})
        configured: list[str] = []
        for spec in manifest.server_configs:
            template = _read_json(ext_dir / spec.template)
            if not template:
                logger.warning(
                    "[%s] Skipping server config %s: template %s missing or invalid",
                    agent_id,
                    spec.key,
                    spec.template,
                )
                continue
            servers[spec.key] = template
            configured.append(spec.key)

        if configured:
            _write_json(settings_path, settings)
        return configured

    def remove(self, agent_id: str, keys: list[str]) -> list[str]:
        """Remove server entries by key for one agent.

        Returns:
            Keys that were present and removed.
        """
        profile = get_agent_profile(agent_id)
        if not keys or not profile.supports_server_configs:
            return []

        settings_path = self.project_dir / profile.settings_file
        if not settings_path.exists():
            return []
        settings = _read_json(settings_path)
        servers = (settings or {}).get(profile.settings_key)
        if not isinstance(servers, dict):
            return []

        removed = [key for key in keys if servers.pop(key, None) is not None]
        if removed:
            _write_json(settings_path, settings)
        return removed


def _read_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON object; a missing file reads as an empty object."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Expected a JSON object in %s", path)
        return None
    return data


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
