"""Configuration loaded from .storyshelf.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from storyshelf.cache import SNAPSHOT_VERSION
from storyshelf.gateway import GatewayConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".storyshelf.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG = Path.home() / ".config" / "storyshelf" / "config.toml"


class ApiSectionConfig(BaseModel):
    """[api] section."""

    url: str = ""
    timeout: float = 15.0


class CacheSectionConfig(BaseModel):
    """[cache] section."""

    directory: str = str(Path.home() / ".local" / "share" / "storyshelf")
    debounce_seconds: float = 0.5
    version: int = SNAPSHOT_VERSION


class ShelfConfig(BaseModel):
    """Top-level configuration."""

    api: ApiSectionConfig = Field(default_factory=ApiSectionConfig)
    cache: CacheSectionConfig = Field(default_factory=CacheSectionConfig)

    @property
    def cache_dir(self) -> Path:
        return Path(self.cache.directory).expanduser()

    def to_gateway_config(self) -> GatewayConfig:
        return GatewayConfig(url=self.api.url, timeout=self.api.timeout)


def load_config(path: str | Path | None = None) -> ShelfConfig:
    """Load configuration from a TOML file, then overlay env vars.

    Search order:
    1. Explicit path (if provided)
    2. .storyshelf.toml in CWD
    3. ~/.config/storyshelf/config.toml
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG.exists():
            data = _load_toml(GLOBAL_CONFIG)
            logger.info("Loaded config from %s", GLOBAL_CONFIG)

    try:
        config = ShelfConfig.model_validate(data) if data else ShelfConfig()
    except ValueError as exc:
        logger.warning("Invalid config, using defaults: %s", exc)
        config = ShelfConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: ShelfConfig, **cli_kwargs: object) -> ShelfConfig:
    """Overlay explicitly-set CLI flags (non-None values) onto the config."""
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "api_url": ("api", "url"),
        "api_timeout": ("api", "timeout"),
        "cache_dir": ("cache", "directory"),
        "debounce": ("cache", "debounce_seconds"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = str(value) if isinstance(value, Path) else value

    return ShelfConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: ShelfConfig) -> ShelfConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "STORYSHELF_API_URL": ("api", "url"),
        "STORYSHELF_API_TIMEOUT": ("api", "timeout"),
        "STORYSHELF_CACHE_DIR": ("cache", "directory"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    return ShelfConfig.model_validate(data)
