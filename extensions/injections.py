"""Apply and strip extension injections in installed skill files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator

from extensions.manifest import ExtensionManifest
from extensions.markers import apply_block, mentions_extension, strip_block, strip_extension
from extensions.state import AgentTarget
from skills.installer import SkillInstaller

logger = logging.getLogger(__name__)

# Files scanned when stripping by extension name without a manifest
TEXT_SUFFIXES = (".md", ".mdc", ".txt")


class InjectionEngine:
    """Apply or strip every injection of one extension for one agent.

    Missing target skills and missing content files skip the directive:
    a target may legitimately not be installed for every agent, and one
    broken directive must not block the rest of an operation.

    Example:
        >>> engine = InjectionEngine(lambda agent: SkillInstaller(root, agent.id))
        >>> engine.apply_all("hello-commit", agent, manifest, ext_dir)
        1
    """

    def __init__(self, installer_for: Callable[[AgentTarget], SkillInstaller]):
        """Initialize the engine.

        Args:
            installer_for: Returns the skill installer of an agent; used to
                resolve skill ids to file paths.
        """
        self.installer_for = installer_for

    def apply_all(
        self,
        extension_name: str,
        agent: AgentTarget,
        manifest: ExtensionManifest,
        source_dir: Path,
    ) -> int:
        """Apply all injection directives of a manifest.

        Args:
            extension_name: Name written into the markers.
            agent: Agent whose skill files are modified.
            manifest: Manifest declaring the injections.
            source_dir: Extension root the content files are read from.

        Returns:
            Number of directives applied.
        """
        installer = self.installer_for(agent)
        count = 0

        for injection in manifest.injections:
            skill_file = installer.skill_file(injection.target)
            host = _read_text(skill_file)
            if host is None:
                logger.info(
                    "[%s] Skipping injection into %s: skill not installed",
                    agent.id,
                    injection.target,
                )
                continue

            content = _read_text(source_dir / injection.file)
            if content is None:
                logger.warning(
                    "[%s] Skipping injection into %s: %s not found in %s",
                    agent.id,
                    injection.target,
                    injection.file,
                    extension_name,
                )
                continue

            updated = apply_block(
                host, content, injection.position.value, extension_name, injection.target
            )
            if updated != host and not _write_text(skill_file, updated):
                continue
            count += 1

        return count

    def strip_all(
        self,
        extension_name: str,
        agent: AgentTarget,
        manifest: ExtensionManifest,
    ) -> int:
        """Strip the blocks of every directive a manifest declares.

        Returns:
            Number of files changed.
        """
        installer = self.installer_for(agent)
        count = 0

        for injection in manifest.injections:
            skill_file = installer.skill_file(injection.target)
            host = _read_text(skill_file)
            if host is None:
                continue

            updated = strip_block(
                host, extension_name, injection.target, injection.position.value
            )
            if updated != host and _write_text(skill_file, updated):
                count += 1

        return count

    def strip_by_name(self, extension_name: str, agent: AgentTarget) -> int:
        """Strip every block of an extension without knowing its manifest.

        Scans the agent's text files recursively; used when the stored
        manifest is missing or corrupted.

        Returns:
            Number of files changed.
        """
        installer = self.installer_for(agent)
        count = 0

        for path in _text_files(installer.config_dir, installer.skills_dir):
            host = _read_text(path)
            if host is None or not mentions_extension(host, extension_name):
                continue

            updated = strip_extension(host, extension_name)
            if updated != host and _write_text(path, updated):
                count += 1

        return count


def _text_files(*roots: Path) -> Iterator[Path]:
    seen: set[Path] = set()
    for root in roots:
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*")):
            if path in seen or not path.is_file() or path.suffix not in TEXT_SUFFIXES:
                continue
            seen.add(path)
            yield path


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    # newline="" keeps line endings byte-for-byte
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None


def _write_text(path: Path, content: str) -> bool:
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as e:
        logger.warning("Cannot write %s: %s", path, e)
        return False
    return True
