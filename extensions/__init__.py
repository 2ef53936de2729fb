"""Extension system for skillfactory.

Extensions add to, and optionally replace, the base skills installed for
each configured agent:

- skills: extra skill directories
- replaces: extension skills installed under a base skill's id
- injections: text blocks inserted into installed skill files
- commands: CLI commands registered at startup
- server_configs: server entries merged into agent settings files

Installed extensions are copied to .skillfactory/extensions/ inside the
project and tracked in .skillfactory.json.
"""

from extensions.errors import (
    ExtensionError,
    ExtensionNotInstalledError,
    ManifestError,
    ReplacementConflictError,
    SkillNotInstalledError,
    SourceResolutionError,
    StateError,
)
from extensions.loader import CommandLoader
from extensions.manifest import ExtensionManifest, InjectionPosition
from extensions.reconciler import ExtensionReconciler, OperationReport, OperationState
from extensions.sources import SourceResolver
from extensions.state import ProjectState, StateStore
from extensions.storage import ExtensionStorage

__all__ = [
    "CommandLoader",
    "ExtensionError",
    "ExtensionManifest",
    "ExtensionNotInstalledError",
    "ExtensionReconciler",
    "ExtensionStorage",
    "InjectionPosition",
    "ManifestError",
    "OperationReport",
    "OperationState",
    "ProjectState",
    "ReplacementConflictError",
    "SkillNotInstalledError",
    "SourceResolutionError",
    "SourceResolver",
    "StateError",
    "StateStore",
]
