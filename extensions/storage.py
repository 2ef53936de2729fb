"""Durable per-project storage of installed extension trees.

Each installed extension keeps a copy of its resolved manifest and files in
``<project>/.skillfactory/extensions/<name>/``. Update and remove read from
this copy, never from the original source, which may have changed or gone
away.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from extensions.errors import ManifestError
from extensions.manifest import ExtensionManifest

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = ".skillfactory/extensions"

_IGNORED = shutil.ignore_patterns(".git", "__pycache__", "node_modules")


class ExtensionStorage:
    """Manage extension directories inside a project.

    Example:
        >>> storage = ExtensionStorage(Path("."))
        >>> storage.store("hello-commit", Path("/tmp/resolved"))
        >>> storage.load_manifest("hello-commit")
        ExtensionManifest(name='hello-commit', version='1.0.0')
    """

    def __init__(self, project_dir: Path, storage_dir: str = DEFAULT_STORAGE_DIR):
        self.project_dir = Path(project_dir)
        self.root = self.project_dir / storage_dir

    def path(self, name: str) -> Path:
        """Directory holding an extension (may not exist)."""
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path(name).is_dir()

    def store(self, name: str, source_dir: Path) -> Path:
        """Copy a resolved extension tree into storage.

        The tree is first copied next to its final location and then swapped
        in, so a failed copy leaves the previous version untouched.

        Args:
            name: Extension name.
            source_dir: Resolved extension root.

        Returns:
            The stored extension directory.
        """
        target = self.path(name)
        staging = target.with_name(f".{target.name}.staging")
        target.parent.mkdir(parents=True, exist_ok=True)

        if staging.exists():
            shutil.rmtree(staging)
        shutil.copytree(source_dir, staging, ignore=_IGNORED)

        if target.exists():
            shutil.rmtree(target)
        staging.rename(target)

        logger.debug("Stored extension %s in %s", name, target)
        return target

    def load_manifest(self, name: str) -> ExtensionManifest | None:
        """Load the stored manifest of an extension.

        Returns:
            The manifest, or None when the directory or manifest is missing
            or invalid.
        """
        ext_dir = self.path(name)
        if not ext_dir.is_dir():
            return None
        try:
            return ExtensionManifest.from_dir(ext_dir)
        except ManifestError as e:
            logger.warning("Cannot load manifest of extension %s: %s", name, e)
            return None

    def remove(self, name: str) -> bool:
        """Delete an extension directory.

        Returns:
            True if removed, False if it did not exist.
        """
        target = self.path(name)
        if not target.exists():
            return False
        shutil.rmtree(target)

        # Scoped names (@scope/name) leave an empty scope directory behind
        parent = target.parent
        if parent != self.root and parent.exists() and not any(parent.iterdir()):
            parent.rmdir()
        return True
