from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError

log = logging.getLogger(__name__)

APP_NAME = "ossdesk"
LOG_LEVEL_ENV = "OSSDESK_LOG_LEVEL"


def config_base_dir() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        base = Path(config_home).expanduser()
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def default_settings_path() -> Path:
    return config_base_dir() / "config.json"


@dataclass(frozen=True)
class Settings:
    cache_ttl_seconds: int = 300
    default_region: str = "oss-cn-hangzhou"
    default_max_keys: int = 100
    session_hours: int = 24
    log_level: str = "WARNING"
    require_login: bool = False

    def effective_log_level(self, override: Optional[str] = None) -> str:
        level = override or os.environ.get(LOG_LEVEL_ENV) or self.log_level
        return level.strip().upper()


def _read_payload(path: Path) -> dict[str, object]:
    try:
        payload = json.loads(path.read_text())
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return {}
    if not isinstance(payload, dict):
        log.warning("Ignoring settings file %s: top level is not an object", path)
        return {}
    return payload


def load_settings(path: Optional[Path] = None) -> Settings:
    path = path or default_settings_path()
    payload = _read_payload(path)
    defaults = Settings()
    values: dict[str, object] = {}
    for field in fields(Settings):
        if field.name not in payload:
            continue
        value = payload[field.name]
        expected = type(getattr(defaults, field.name))
        # bool is a subclass of int; keep the two apart
        if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigurationError(f"{path}: '{field.name}' must be an integer")
        if not isinstance(value, expected):
            raise ConfigurationError(
                f"{path}: '{field.name}' must be of type {expected.__name__}"
            )
        values[field.name] = value
    settings = Settings(**values)
    if settings.cache_ttl_seconds < 0:
        raise ConfigurationError(f"{path}: 'cache_ttl_seconds' must not be negative")
    if settings.default_max_keys <= 0:
        raise ConfigurationError(f"{path}: 'default_max_keys' must be positive")
    if settings.session_hours <= 0:
        raise ConfigurationError(f"{path}: 'session_hours' must be positive")
    return settings
