"""
Configuration file parsing and management.

Reads YAML (or JSON) configuration files and merges them from multiple
sources (custom path → project → user → system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".module-audit.yml",                                     # Project root (highest priority)
    ".module-audit.yaml",
    os.path.expanduser("~/.config/module-audit/config.yml"),  # User global
    os.path.expanduser("~/.config/module-audit/config.yaml"),
    "/etc/module-audit/config.yml",                          # System global
    "/etc/module-audit/config.yaml",
]

BACKENDS = ("psgallery", "pip")
SCOPES = ("CurrentUser", "AllUsers")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Mapping sections merged key by key across config files
SECTIONS = ("preferences", "logging")


def _str_value(data: dict[str, Any], key: str, default: str | None) -> str | None:
    """String setting; a missing or null value falls back to the default."""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _int_value(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {type(value).__name__}")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping, got {type(value).__name__}")
    return value


def _name_list(data: dict[str, Any], key: str) -> tuple[str, ...]:
    """List of package names; a bare string is rejected rather than split."""
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list of package names, got {type(value).__name__}")
    names = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"{key} entries must be non-empty strings, got {item!r}")
        names.append(item.strip())
    return tuple(names)


@dataclass(frozen=True)
class Preferences:
    """
    Backend and command preferences.

    Attributes:
        timeout_seconds: Timeout for registry lookups and upgrade commands (None = no timeout)
        pwsh: PowerShell executable used by the psgallery backend
        repository: PowerShell repository to query and install from
        scope: Install-Module scope ('CurrentUser' or 'AllUsers')
        python: Python interpreter whose pip is managed (None = the running interpreter)
        index_url: Base URL of the PyPI JSON API
    """
    timeout_seconds: int | None = None
    pwsh: str = "pwsh"
    repository: str = "PSGallery"
    scope: str = "CurrentUser"
    python: str | None = None
    index_url: str = "https://pypi.org/pypi"

    def __post_init__(self):
        if self.timeout_seconds is not None and not 1 <= self.timeout_seconds <= 3600:
            raise ValueError(
                f"Invalid timeout_seconds: {self.timeout_seconds}. "
                "Must be between 1 and 3600"
            )

        if self.scope not in SCOPES:
            raise ValueError(
                f"Invalid scope: {self.scope}. "
                f"Must be one of: {', '.join(SCOPES)}"
            )

        if not self.repository:
            raise ValueError("repository must not be empty")

        if not self.pwsh:
            raise ValueError("pwsh must not be empty")

        if not self.index_url:
            raise ValueError("index_url must not be empty")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """
        Create Preferences from dictionary.

        Raises:
            ValueError: If a value has the wrong type or is out of range
        """
        return Preferences(
            timeout_seconds=_int_value(data, "timeout_seconds"),
            pwsh=_str_value(data, "pwsh", "pwsh"),
            repository=_str_value(data, "repository", "PSGallery"),
            scope=_str_value(data, "scope", "CurrentUser"),
            python=_str_value(data, "python", None),
            index_url=_str_value(data, "index_url", "https://pypi.org/pypi").rstrip("/"),
        )


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging settings.

    Attributes:
        level: Console log level
        file: Optional log file path
    """
    level: str = "INFO"
    file: str | None = None

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.level}. "
                f"Must be one of: {', '.join(LOG_LEVELS)}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LoggingConfig:
        return LoggingConfig(
            level=_str_value(data, "level", "INFO"),
            file=_str_value(data, "file", None),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for module-audit.

    Attributes:
        version: Config schema version
        backend: Package ecosystem to audit ('psgallery' or 'pip')
        exclude: Package names never checked or upgraded
        preferences: Backend preferences
        logging: Logging settings
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    backend: str = "psgallery"
    exclude: tuple[str, ...] = ()
    preferences: Preferences = field(default_factory=Preferences)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

        if self.backend not in BACKENDS:
            raise ValueError(
                f"Invalid backend: {self.backend}. "
                f"Must be one of: {', '.join(BACKENDS)}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """
        Create Config from dictionary.

        Raises:
            ValueError: If a value has the wrong type or fails validation
        """
        return Config(
            version=data.get("version", 1),
            backend=_str_value(data, "backend", "psgallery"),
            exclude=_name_list(data, "exclude"),
            preferences=Preferences.from_dict(_section(data, "preferences")),
            logging=LoggingConfig.from_dict(_section(data, "logging")),
            source=source,
        )


def merge_config_data(high: dict[str, Any], low: dict[str, Any]) -> dict[str, Any]:
    """
    Merge two raw configuration mappings.

    Keys set in `high` win, even when they hold the default value. Null
    values count as unset. Sections are merged key by key and exclude lists are joined.

    Args:
        high: Mapping from the higher-priority file
        low: Mapping from the lower-priority file

    Returns:
        New merged mapping
    """
    merged = dict(low)
    for key, value in high.items():
        if value is None:
            continue
        if key in SECTIONS and isinstance(value, dict) and isinstance(low.get(key), dict):
            section = dict(low[key])
            section.update({k: v for k, v in value.items() if v is not None})
            merged[key] = section
        elif key == "exclude" and isinstance(value, list) and isinstance(low.get(key), list):
            merged[key] = list(dict.fromkeys(value + low[key]))
        else:
            merged[key] = value
    return merged


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_data(file_path: str, verbose: bool = False) -> dict[str, Any] | None:
    """
    Load and validate the raw mapping of a single configuration file.

    Args:
        file_path: Path to a .yml/.yaml or .json configuration file
        verbose: Enable verbose logging

    Returns:
        Parsed mapping, or None if the file is missing, unparseable or invalid
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        Config.from_dict(data, source=file_path)
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return data


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Returns:
        Config object, or None if file cannot be loaded
    """
    data = load_config_data(file_path, verbose)
    if data is None:
        return None
    return Config.from_dict(data, source=file_path)


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .module-audit.yml
    3. User ~/.config/module-audit/config.yml
    4. System /etc/module-audit/config.yml
    5. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    layers: list[tuple[str, dict[str, Any]]] = []

    if custom_path:
        data = load_config_data(custom_path, verbose)
        if data is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        layers.append((custom_path, data))
        vlog(f"Using custom config: {custom_path}", verbose)

    for location in CONFIG_LOCATIONS:
        data = load_config_data(location, verbose)
        if data is not None:
            layers.append((location, data))
            vlog(f"Found config at: {location}", verbose)

    if not layers:
        vlog("No config files found, using defaults", verbose)
        return Config()

    source, merged = layers[0]
    for _, data in layers[1:]:
        merged = merge_config_data(merged, data)

    vlog(f"Merged {len(layers)} config files", verbose)
    return Config.from_dict(merged, source=source)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    lowered = [name.lower() for name in config.exclude]
    if len(lowered) != len(set(lowered)):
        warnings.append("Duplicate package names in exclude list")

    if config.backend == "pip" and not config.preferences.index_url.startswith("https://"):
        warnings.append(f"index_url is not HTTPS: {config.preferences.index_url}")

    if config.backend == "psgallery" and config.preferences.scope == "AllUsers":
        warnings.append("scope 'AllUsers' requires an elevated PowerShell session")

    return warnings
