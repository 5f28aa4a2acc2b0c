"""Configuration loader for ReviewLoom.

Reads config/reviewloom.yaml once and exposes nested values by key path.
Environment variables (optionally loaded from a .env file) take precedence
for deployment-specific settings such as connection URLs and API keys.

Usage:
    from reviewloom.core.config.config_loader import get_config_value

    ttl = get_config_value("cache", "ttl", "diff", default=1800)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "reviewloom.yaml"

_MISSING = object()


def get_config_path() -> Path:
    """Directory holding reviewloom.yaml (REVIEWLOOM_CONFIG_DIR overrides)."""
    override = os.getenv("REVIEWLOOM_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent.parent / "config"


@lru_cache(maxsize=1)
def load_unified_config() -> Dict[str, Any]:
    """Load and cache the YAML configuration. Missing file yields {}."""
    config_file = get_config_path() / CONFIG_FILENAME
    if not config_file.exists():
        logger.warning(f"{CONFIG_FILENAME} not found at {config_file}, using defaults")
        return {}

    with open(config_file, "r") as f:
        config = yaml.safe_load(f) or {}

    logger.debug(f"Loaded configuration from {config_file}")
    return config


def reload_configs() -> None:
    """Drop the cached configuration so the next read hits the file."""
    load_unified_config.cache_clear()


def get_config_value(*keys: str, default: Any = None) -> Any:
    """Walk the nested config by key path, returning default when absent."""
    node: Any = load_unified_config()
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key, _MISSING)
        if node is _MISSING:
            return default
    return node


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def is_development() -> bool:
    """Diagnostic mode: error bodies include stack traces."""
    return get_env("REVIEWLOOM_ENV", get_config_value("app", "env", default="production")) in (
        "development",
        "dev",
        "test",
    )
