"""Settings for lock managers and the command line tool.

Settings are read from a JSON file (``config.json`` in the current directory
unless a path is given):

    {
        "database": "mysql+pymysql://user:pass@db/app",
        "locks": {
            "table_name": "db_locks",
            "lease_ms": 180000,
            "timeout_ms": 3000,
            "retry_interval_ms": 0,
            "stale_window_ms": 60000,
            "renew_interval_ms": 1000,
            "renew_workers": 8
        }
    }

``TABLELOCK_DATABASE`` and ``TABLELOCK_TABLE`` override the file.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from tablelock.lib.exceptions import ConfigurationError
from tablelock.models.lock_row import TARGET_LENGTH

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"
ENV_DATABASE = "TABLELOCK_DATABASE"
ENV_TABLE = "TABLELOCK_TABLE"

DEFAULT_LEASE_MS = 3 * 60 * 1000
DEFAULT_TIMEOUT_MS = 3 * 1000
DEFAULT_STALE_WINDOW_MS = 60 * 1000
DEFAULT_RENEW_INTERVAL_MS = 1000


@dataclass(frozen=True)
class LockSettings:
    database: Optional[str] = None
    table_name: str = "db_locks"
    lease_ms: int = DEFAULT_LEASE_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_interval_ms: int = 0
    # a row not renewed for this long is treated as abandoned
    stale_window_ms: int = DEFAULT_STALE_WINDOW_MS
    renew_interval_ms: int = DEFAULT_RENEW_INTERVAL_MS
    renew_workers: int = 8

    def validate(self, config_file: Optional[str] = None) -> "LockSettings":
        if not self.table_name or not self.table_name.replace("_", "").isalnum():
            raise ConfigurationError(
                f"Invalid lock table name: {self.table_name!r}", config_file=config_file, field="table_name"
            )
        positive = ("lease_ms", "stale_window_ms", "renew_interval_ms", "renew_workers")
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_file=config_file, field=name)
        for name in ("timeout_ms", "retry_interval_ms"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative", config_file=config_file, field=name)
        if self.renew_interval_ms >= self.stale_window_ms:
            raise ConfigurationError(
                "renew_interval_ms must be shorter than stale_window_ms",
                config_file=config_file,
                field="renew_interval_ms",
            )
        return self


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> LockSettings:
    """Load settings from ``path`` (or ./config.json) and the environment.

    A missing default config file is not an error; a missing explicit one is.
    """
    env = os.environ if env is None else env
    cfg_path = Path(path) if path else Path.cwd() / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if cfg_path.exists():
        raw = _read_json(cfg_path)
        logger.debug("Loaded lock settings from %s", cfg_path)
    elif path:
        raise ConfigurationError("Config file not found", config_file=str(cfg_path))

    settings = _from_mapping(raw, str(cfg_path))

    overrides: dict[str, Any] = {}
    if env.get(ENV_DATABASE):
        overrides["database"] = env[ENV_DATABASE]
    if env.get(ENV_TABLE):
        overrides["table_name"] = env[ENV_TABLE]
    if overrides:
        settings = replace(settings, **overrides)

    return settings.validate(str(cfg_path))


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        raise ConfigurationError("Cannot read config file", config_file=str(path), details=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a JSON object", config_file=str(path))
    return data


def _from_mapping(raw: Mapping[str, Any], config_file: str) -> LockSettings:
    values: dict[str, Any] = {}
    if raw.get("database"):
        values["database"] = str(raw["database"])

    block = raw.get("locks", {})
    if block is None:
        block = {}
    if not isinstance(block, dict):
        raise ConfigurationError("'locks' must be a JSON object", config_file=config_file, field="locks")

    known = {f.name: f for f in fields(LockSettings)}
    for key, value in block.items():
        if key not in known or key == "database":
            logger.warning("Ignoring unknown lock setting '%s' in %s", key, config_file)
            continue
        if key == "table_name":
            values[key] = str(value)
            continue
        try:
            values[key] = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"{key} must be an integer", config_file=config_file, field=key, details=repr(value)
            ) from e
    return LockSettings(**values)


def validate_target(target: str) -> None:
    if not target:
        raise ValueError("target must be a non-empty string")
    if len(target) > TARGET_LENGTH:
        raise ValueError(f"target must be at most {TARGET_LENGTH} characters")
