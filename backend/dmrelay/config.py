"""Relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml  — non-secret configuration

Every section has defaults, so a missing file yields a working config.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class PresenceSettings(BaseModel):
    """Presence lifecycle after a connection drops."""
    reap_delay_seconds: float = 5.0
    # Off by default: a reconnect leaves the old offline record until reaped.
    merge_on_reconnect: bool = False

    @field_validator("reap_delay_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("reap_delay_seconds must be >= 0")
        return value


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Load *AppConfig* from YAML, then apply the ``PORT`` env override."""
    path = Path(settings_path) if settings_path else SETTINGS_FILE
    settings_data = _load_yaml(path)

    config = AppConfig(**settings_data)

    env_port = os.environ.get("PORT")
    if env_port:
        config.server.port = int(env_port)

    logger.info(
        "Settings loaded (server=%s:%s, reap_delay=%ss, merge_on_reconnect=%s)",
        config.server.host,
        config.server.port,
        config.presence.reap_delay_seconds,
        config.presence.merge_on_reconnect,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Process-wide config, loaded once from the default settings file."""
    return load_config()
