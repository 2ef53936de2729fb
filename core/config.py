"""Configuration management for skillfactory.

Loads configuration from:
1. skillfactory.toml (defaults)
2. Environment variables (overrides)
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

CONFIG_FILE = "skillfactory.toml"


@dataclass
class ProjectConfig:
    """Where project state and installed extensions live."""

    state_file: str = ".skillfactory.json"
    storage_dir: str = ".skillfactory/extensions"
    default_agents: list[str] = field(default_factory=lambda: ["claude"])


@dataclass
class SourcesConfig:
    """Extension source resolution configuration."""

    github_api_url: str = "https://api.github.com"
    github_archive_url: str = "https://github.com"
    timeout: int = 60

    # Also configurable via env: GITHUB_TOKEN or GH_TOKEN
    token: str = ""


@dataclass
class ExtensionsConfig:
    """Which installed extensions may register CLI commands."""

    enabled: list[str] = field(default_factory=list)  # Whitelist (empty = all)
    disabled: list[str] = field(default_factory=list)  # Blacklist


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class Config:
    """Main configuration container."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    extensions: ExtensionsConfig = field(default_factory=ExtensionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        project_data = data.get("project", {})
        sources_data = data.get("sources", {})
        extensions_data = data.get("extensions", {})
        logging_data = data.get("logging", {})

        return cls(
            project=ProjectConfig(**project_data),
            sources=SourcesConfig(**sources_data),
            extensions=ExtensionsConfig(**extensions_data),
            logging=LoggingConfig(**logging_data),
        )


def find_config_file(start: Path | None = None) -> Path | None:
    """Find skillfactory.toml in the start (or current) directory or its parents.

    Returns:
        Path to skillfactory.toml or None if not found.
    """
    current = Path(start or Path.cwd())

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILE
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to skillfactory.toml

    Returns:
        Config object with merged settings.
    """
    # Start with defaults
    config_data: dict[str, Any] = {}

    # Load from file if available
    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                config_data = tomllib.load(f)

    # Apply environment variable overrides
    env_overrides = {
        "sources": {
            "timeout": _int_or_none(os.getenv("SKILLFACTORY_HTTP_TIMEOUT")),
            "token": os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN"),
        },
        "logging": {
            "level": os.getenv("SKILLFACTORY_LOG_LEVEL"),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    return Config.from_dict(config_data)


def _int_or_none(value: str | None) -> int | None:
    """Convert string to int, or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config

