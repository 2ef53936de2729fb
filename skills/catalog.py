"""Catalog of base skills shipped with skillfactory."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

SKILL_FILE = "SKILL.md"

DEFAULT_LIBRARY_DIR = Path(__file__).parent / "library"


class BaseSkillCatalog:
    """Base skills available for installation.

    A base skill is a directory under the library root holding a SKILL.md.
    The catalog is also what tells base skills apart from custom ones and
    where original content comes from when a replaced skill is restored.

    Example:
        >>> catalog = BaseSkillCatalog()
        >>> catalog.available()
        ['sf-commit', 'sf-plan', 'sf-review']
    """

    def __init__(self, library_dir: Path | None = None):
        self.library_dir = Path(library_dir or DEFAULT_LIBRARY_DIR)

    def available(self) -> list[str]:
        """List base skill ids, sorted."""
        if not self.library_dir.exists():
            return []
        return sorted(
            entry.name
            for entry in self.library_dir.iterdir()
            if entry.is_dir() and (entry / SKILL_FILE).exists()
        )

    def contains(self, skill_id: str) -> bool:
        return (self.library_dir / skill_id / SKILL_FILE).exists()

    def source_dir(self, skill_id: str) -> Path | None:
        """Directory holding a base skill, or None if unknown."""
        path = self.library_dir / skill_id
        if (path / SKILL_FILE).exists():
            return path
        return None

    def partition(self, skill_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split skill ids into (base, custom), preserving order."""
        base: list[str] = []
        custom: list[str] = []
        for skill_id in skill_ids:
            (base if self.contains(skill_id) else custom).append(skill_id)
        return base, custom
