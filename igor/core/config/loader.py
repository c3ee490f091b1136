"""
Configuration loader — reads igor.yml into an UninstallConfig.

Reads YAML, validates against the pydantic schema, and returns the
typed configuration.  No file at all means the defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as SchemaError

from igor.core.errors import ConfigError
from igor.core.models.config import UninstallConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "igor.yml"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for igor.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to igor.yml, or None if not found.
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


def load_config(path: Path | None = None) -> UninstallConfig:
    """Load and validate the uninstall configuration.

    Args:
        path: Explicit path to a config file. If None, searches upward;
            if nothing is found the defaults are returned.

    Returns:
        Validated UninstallConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file is
            unreadable, not YAML, not a mapping, or fails the schema.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found, using defaults", CONFIG_FILE)
            return UninstallConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return UninstallConfig()

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The file may wrap everything under an "uninstall" key or be flat
    if "uninstall" in data and isinstance(data["uninstall"], dict):
        data = data["uninstall"]

    try:
        config = UninstallConfig.model_validate(data)
    except SchemaError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s (dry_run=%s)", path, config.dry_run)
    return config
