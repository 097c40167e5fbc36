"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is missing or unreadable.

Usage:
    from arbor.config.app_config import load_app_config, get_documents_dir

    config = load_app_config()
    documents = get_documents_dir()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

# Environment overrides
DATA_DIR_ENV = "ARBOR_DATA_DIR"
LOG_LEVEL_ENV = "ARBOR_LOG_LEVEL"


@dataclass
class StorageConfig:
    """Configuration for document files on disk."""

    extension: str = ".arbor"
    lock_suffix: str = ".lock"
    read_only_at_rest: bool = True


@dataclass
class EditorConfig:
    """Configuration for the interactive editor."""

    confirm_delete: bool = True
    default_placement: str = "next_sibling"
    show_indices: bool = True


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    level: str = "WARNING"


@dataclass
class AppConfig:
    """Application-wide configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    editor: EditorConfig = field(default_factory=EditorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    paths: dict[str, str] = field(default_factory=dict)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "storage": {
            "extension": ".arbor",
            "lock_suffix": ".lock",
            "read_only_at_rest": True,
        },
        "editor": {
            "confirm_delete": True,
            "default_placement": "next_sibling",
            "show_indices": True,
        },
        "logging": {
            "level": "WARNING",
        },
        "paths": {
            "data_dir": "data",
            "documents_subdir": "documents",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    storage_data = data.get("storage") or {}
    storage = StorageConfig(
        extension=storage_data.get("extension", ".arbor"),
        lock_suffix=storage_data.get("lock_suffix", ".lock"),
        read_only_at_rest=storage_data.get("read_only_at_rest", True),
    )
    if not storage.extension.startswith("."):
        storage.extension = f".{storage.extension}"

    editor_data = data.get("editor") or {}
    editor = EditorConfig(
        confirm_delete=editor_data.get("confirm_delete", True),
        default_placement=editor_data.get("default_placement", "next_sibling"),
        show_indices=editor_data.get("show_indices", True),
    )

    logging_data = data.get("logging") or {}
    logging_cfg = LoggingConfig(level=str(logging_data.get("level", "WARNING")).upper())

    paths = dict(defaults["paths"])
    paths.update(data.get("paths") or {})

    return AppConfig(storage=storage, editor=editor, logging=logging_cfg, paths=paths)


def load_app_config(
    force_reload: bool = False,
    config_file: Path | None = None,
) -> AppConfig:
    """Load application config.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternative YAML file (defaults to CONFIG_FILE).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_file is None:
        return _cached_config

    path = config_file or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.error("app_config_load_failed", source=str(path), error=str(e))
            data = _get_defaults()
        if not isinstance(data, dict):
            logger.warning("app_config_invalid", source=str(path))
            data = _get_defaults()
    else:
        logger.debug("using_default_config")
        data = _get_defaults()

    config = _parse_config(data)
    if config_file is None:
        _cached_config = config
    return config


def get_data_dir(config: AppConfig | None = None) -> Path:
    """Return the application data directory.

    ARBOR_DATA_DIR takes precedence over the configured paths.data_dir.
    """
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    config = config or load_app_config()
    return Path(config.paths.get("data_dir", "data")).expanduser()


def get_documents_dir(config: AppConfig | None = None) -> Path:
    """Return the directory holding document files."""
    config = config or load_app_config()
    return get_data_dir(config) / config.paths.get("documents_subdir", "documents")


def get_log_level(config: AppConfig | None = None) -> str:
    """Return the effective log level (ARBOR_LOG_LEVEL wins over config)."""
    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        return env_level.strip().upper()
    config = config or load_app_config()
    return config.logging.level


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
