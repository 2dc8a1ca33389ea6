"""
Configuration loader — reads envforge.yml into Settings.

The file is optional: without one every section falls back to the
built-in defaults. It reads YAML, validates against the Pydantic
schema, and returns a typed Settings object.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from envforge.core.models.settings import Settings

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "envforge.yml"


class ConfigError(Exception):
    """Raised when envforge configuration is invalid."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for envforge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to envforge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit config file. Must exist when given.
            If None, searches upward and falls back to defaults.

    Returns:
        Validated Settings model.

    Raises:
        ConfigError: If an explicit file is missing or any file is invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found; using defaults", CONFIG_FILE)
            return Settings()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    # An empty file means "all defaults"
    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info(
        "Loaded %s (%d provisioning steps, %d cleanup categories)",
        path, len(settings.provisioning.steps), len(settings.teardown.categories),
    )
    return settings


def project_root(config_path: Path | None) -> Path:
    """Repository root: the config file's directory, else the cwd."""
    if config_path is None:
        return Path.cwd().resolve()
    return config_path.parent.resolve()
