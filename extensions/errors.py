"""Exceptions raised by the extension system."""

from __future__ import annotations


class ExtensionError(Exception):
    """Base class for extension lifecycle errors."""

    pass


class ManifestError(ExtensionError):
    """Raised when manifest parsing or validation fails."""

    pass


class SourceResolutionError(ExtensionError):
    """Raised when an extension source cannot be downloaded or validated."""

    pass


class ReplacementConflictError(ExtensionError):
    """Raised when a base skill is already replaced by another extension."""

    def __init__(self, skill_id: str, owner: str, extension: str):
        self.skill_id = skill_id
        self.owner = owner
        self.extension = extension
        super().__init__(
            f"Cannot install '{extension}': skill '{skill_id}' is already "
            f"replaced by extension '{owner}'. Remove '{owner}' first."
        )


class ExtensionNotInstalledError(ExtensionError):
    """Raised when an operation targets an extension that is not installed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Extension '{name}' is not installed.")


class StateError(ExtensionError):
    """Raised when the project state file is missing or unreadable."""

    pass


class SkillNotInstalledError(ExtensionError):
    """Raised when an operation targets a remote skill that is not installed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Remote skill '{name}' is not installed.")
