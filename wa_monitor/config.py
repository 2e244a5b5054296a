"""Monitor configuration.

Settings come from a YAML file (see ``config/monitor.example.yaml``) and
can be overridden by environment variables, which ``main`` loads from
``config/.env`` with python-dotenv:

    WHATSAPP_TARGET_GROUPS          comma-separated conversation names
    WHATSAPP_KEYWORDS               comma-separated keywords
    WHATSAPP_BARE_KEYWORDS          comma-separated substring keywords
    WHATSAPP_SCAN_INTERVAL_MINUTES  minutes between scheduled scans
    WHATSAPP_HEADLESS               "true" to hide the browser
    WHATSAPP_SESSION_PATH           browser profile directory
    LOG_LEVEL                       logging level name
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/monitor.yaml")


@dataclass
class MonitorConfig:
    target_conversations: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    bare_keywords: list[str] = field(default_factory=list)

    scan_interval_minutes: float = 30
    batch_size: int = 3
    open_retry_attempts: int = 2
    open_retry_base_delay: float = 2.0
    dedup_retention_seconds: float = 3600
    recent_message_cap: int = 50
    log_rotation_bytes: int = 10 * 1024 * 1024

    match_log_path: str = "logs/whatsapp_matches.txt"
    checkpoint_path: str = "logs/scan-state.json"
    log_dir: str = "logs"
    session_path: str = "config/whatsapp_session"

    headless: bool = False
    ui_timeout_seconds: float = 5
    login_timeout_seconds: float = 300
    item_pacing_seconds: tuple[float, float] = (1.0, 2.0)
    batch_pacing_seconds: tuple[float, float] = (2.0, 4.0)

    restart_max_attempts: int = 3
    restart_base_delay: float = 5.0

    log_level: str = "INFO"

    @property
    def scan_interval_seconds(self) -> float:
        return self.scan_interval_minutes * 60

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.scan_interval_minutes <= 0:
            raise ValueError("scan_interval_minutes must be positive")
        if self.dedup_retention_seconds <= 0:
            raise ValueError("dedup_retention_seconds must be positive")
        if self.open_retry_attempts < 1:
            raise ValueError("open_retry_attempts must be at least 1")
        if self.recent_message_cap < 1:
            raise ValueError("recent_message_cap must be at least 1")
        if self.restart_max_attempts < 0:
            raise ValueError("restart_max_attempts must not be negative")
        for name in ("item_pacing_seconds", "batch_pacing_seconds"):
            low, high = getattr(self, name)
            if low < 0 or high < low:
                raise ValueError(f"{name} must be a (min, max) range with 0 <= min <= max")

        if not self.target_conversations:
            logger.warning("No target conversations configured - scans will do nothing")
        if not self.keywords:
            logger.warning("No keywords configured - no messages will match")
        known = {kw.lower() for kw in self.keywords}
        for keyword in self.bare_keywords:
            if keyword.lower() not in known:
                logger.warning("Bare keyword %r is not in the keyword list and has no effect", keyword)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_list(name: str, value: Any) -> list[str]:
    if isinstance(value, str):
        return _split_list(value)
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    return [str(item).strip() for item in value if str(item).strip()]


def _as_range(name: str, value: Any) -> tuple[float, float]:
    if isinstance(value, (int, float)):
        return (float(value), float(value))
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"{name} must be a number or a [min, max] pair")
    return (float(value[0]), float(value[1]))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


_LIST_FIELDS = {"target_conversations", "keywords", "bare_keywords"}
_RANGE_FIELDS = {"item_pacing_seconds", "batch_pacing_seconds"}
_INT_FIELDS = {"batch_size", "open_retry_attempts", "recent_message_cap", "log_rotation_bytes",
               "restart_max_attempts"}
_FLOAT_FIELDS = {"scan_interval_minutes", "open_retry_base_delay", "dedup_retention_seconds",
                 "ui_timeout_seconds", "login_timeout_seconds", "restart_base_delay"}

ENV_OVERRIDES = {
    "WHATSAPP_TARGET_GROUPS": "target_conversations",
    "WHATSAPP_KEYWORDS": "keywords",
    "WHATSAPP_BARE_KEYWORDS": "bare_keywords",
    "WHATSAPP_SCAN_INTERVAL_MINUTES": "scan_interval_minutes",
    "WHATSAPP_HEADLESS": "headless",
    "WHATSAPP_SESSION_PATH": "session_path",
    "LOG_LEVEL": "log_level",
}


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _LIST_FIELDS:
            return _as_list(name, value)
        if name in _RANGE_FIELDS:
            return _as_range(name, value)
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {value!r} ({exc})") from exc
    if name == "headless":
        return _as_bool(value)
    if name == "log_level":
        return str(value).upper()
    return str(value)


def config_from_mapping(
    data: Mapping[str, Any], env: Mapping[str, str] | None = None
) -> MonitorConfig:
    """Build a validated config from parsed YAML data plus environment overrides.

    Unknown keys are ignored with a warning.
    """
    known = {f.name for f in fields(MonitorConfig)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        if value is None:
            continue
        values[key] = _coerce(key, value)

    env = os.environ if env is None else env
    for var, name in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            values[name] = _coerce(name, raw)

    config = MonitorConfig(**values)
    config.validate()
    return config


def load_config(
    path: str | Path | None = None, env: Mapping[str, str] | None = None
) -> MonitorConfig:
    """Load the monitor configuration.

    Args:
        path: YAML config file. A missing file means defaults plus
            environment overrides.
        env: Environment mapping, defaults to ``os.environ``.

    Raises:
        ValueError: If the file is not a YAML mapping or a value is invalid.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data: Any = {}
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc
        logger.debug("Loaded config from %s", config_path)
    else:
        logger.info("Config file %s not found, using defaults and environment", config_path)

    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a YAML mapping")
    return config_from_mapping(data, env)
