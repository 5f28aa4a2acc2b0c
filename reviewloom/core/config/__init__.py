"""Configuration access for ReviewLoom."""

from .config_loader import (
    get_config_path,
    get_config_value,
    get_env,
    is_development,
    load_unified_config,
    reload_configs,
)

__all__ = [
    "get_config_path",
    "get_config_value",
    "get_env",
    "is_development",
    "load_unified_config",
    "reload_configs",
]
