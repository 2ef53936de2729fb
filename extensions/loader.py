"""Extension command loader.

Installed extensions may contribute CLI commands. Each command is a Python
module inside the stored extension directory exposing ``register(app)``,
which receives the root Typer application and adds its commands to it.
"""

from __future__ import annotations

import importlib.util
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from extensions.errors import ExtensionError
from extensions.manifest import CommandSpec, ExtensionManifest
from extensions.state import ExtensionRecord
from extensions.storage import ExtensionStorage

logger = logging.getLogger(__name__)


class ExtensionLoadError(ExtensionError):
    """Raised when an extension command module cannot be loaded."""

    pass


@dataclass
class LoadedCommand:
    """A command module that registered successfully."""

    extension: str
    spec: CommandSpec
    path: Path
    module: Any = None


@dataclass
class LoadResult:
    """Outcome of loading commands for all installed extensions."""

    loaded: list[LoadedCommand] = field(default_factory=list)
    failed: list[tuple[str, str, str]] = field(default_factory=list)


class CommandLoader:
    """Load extension command modules into a Typer application.

    A failing module (missing file, import error, missing or raising
    ``register``) is reported and skipped; the remaining commands still load.

    Example:
        >>> loader = CommandLoader(ExtensionStorage(Path(".")))
        >>> result = loader.load(state.extensions, app)
        >>> [c.spec.name for c in result.loaded]
        ['hello']
    """

    def __init__(
        self,
        storage: ExtensionStorage,
        enabled_extensions: list[str] | None = None,
        disabled_extensions: list[str] | None = None,
    ):
        """Initialize the loader.

        Args:
            storage: Durable extension storage to load modules from.
            enabled_extensions: Whitelist of extension names (None = all).
            disabled_extensions: Blacklist of extension names.
        """
        self.storage = storage
        self.enabled_extensions = set(enabled_extensions) if enabled_extensions else None
        self.disabled_extensions = set(disabled_extensions or [])

    def load(self, records: Iterable[ExtensionRecord], app: Any) -> LoadResult:
        """Load the commands of every installed extension.

        Args:
            records: Installed extension records.
            app: Typer application passed to each ``register``.

        Returns:
            LoadResult with loaded and failed commands.
        """
        result = LoadResult()

        for record in records:
            if self._is_disabled(record.name):
                continue

            manifest = self.storage.load_manifest(record.name)
            if manifest is None or not manifest.commands:
                continue

            for spec in manifest.commands:
                try:
                    result.loaded.append(self._load_command(record.name, manifest, spec, app))
                except ExtensionLoadError as e:
                    logger.warning(
                        "Failed to load command %s from %s: %s", spec.name, record.name, e
                    )
                    result.failed.append((record.name, spec.name, str(e)))

        return result

    def _is_disabled(self, name: str) -> bool:
        if name in self.disabled_extensions:
            return True
        if self.enabled_extensions is not None and name not in self.enabled_extensions:
            return True
        return False

    def _load_command(
        self, extension: str, manifest: ExtensionManifest, spec: CommandSpec, app: Any
    ) -> LoadedCommand:
        module_file = self.storage.path(extension) / spec.module
        if not module_file.is_file():
            raise ExtensionLoadError(f"Command module not found: {module_file}")

        module = self._load_module(_module_name(manifest.name, spec.name), module_file)

        register = getattr(module, "register", None)
        if not callable(register):
            raise ExtensionLoadError(f"{spec.module} does not define register(app)")

        try:
            register(app)
        except Exception as e:
            raise ExtensionLoadError(f"register() failed: {e}") from e

        logger.debug("Loaded command %s from %s", spec.name, extension)
        return LoadedCommand(extension=extension, spec=spec, path=module_file, module=module)

    def _load_module(self, module_name: str, file_path: Path) -> Any:
        """Dynamically load a Python module from file.

        Args:
            module_name: Name to assign to the module.
            file_path: Path to the Python file.

        Returns:
            Loaded module.
        """
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ExtensionLoadError(f"Could not load module spec from {file_path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ExtensionLoadError(f"Import of {file_path.name} failed: {e}") from e
        return module


def _module_name(extension: str, command: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_]", "_", f"{extension}_{command}")
    return f"skillfactory_ext_{slug}"
