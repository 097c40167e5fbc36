"""Configuration package for arbor."""

from arbor.config.app_config import (
    AppConfig,
    EditorConfig,
    LoggingConfig,
    StorageConfig,
    clear_config_cache,
    get_data_dir,
    get_documents_dir,
    get_log_level,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "EditorConfig",
    "LoggingConfig",
    "StorageConfig",
    "clear_config_cache",
    "get_data_dir",
    "get_documents_dir",
    "get_log_level",
    "load_app_config",
]
