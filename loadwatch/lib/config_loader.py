"""Configuration loading for loadwatch.

Settings come from built-in defaults, then an optional YAML file, then the
Salt pillar key ``loadwatch:monitor`` when a Salt Caller is available, and
finally ``LOADWATCH_*`` environment variables.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from loadwatch.lib import logging_utils
from loadwatch.lib.errors import ConfigError

try:
    from salt.client import Caller  # type: ignore
except Exception:  # pragma: no cover - salt not installed
    Caller = None  # type: ignore

DEFAULT_CONFIG_PATH = Path(os.environ.get("LOADWATCH_CONFIG", "/etc/loadwatch/monitor.yml"))
PILLAR_KEY = "loadwatch:monitor"
SKIP_SALT = os.environ.get("LOADWATCH_SKIP_SALT", "0") in {"1", "true", "True"}
_REPORT_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

ENV_OVERRIDES = {
    "LOADWATCH_EMAIL": "email",
    "LOADWATCH_LOAD_THRESHOLD": "load_threshold",
    "LOADWATCH_CHECK_INTERVAL": "check_interval",
    "LOADWATCH_ALERT_COOLDOWN": "alert_cooldown",
    "LOADWATCH_WEB_SERVER_LOG": "web_server_log",
    "LOADWATCH_ALERT_LOG": "log_file",
    "LOADWATCH_REPORT_TIME": "report_time",
}

_CALLER: Optional[Any] = None


@dataclass(frozen=True)
class MonitorConfig:
    email: str
    load_threshold: int = 15
    check_interval: int = 5
    alert_cooldown: int = 300
    web_server_log: Path = Path("/var/log/nginx/error.log")
    log_file: Path = logging_utils.DEFAULT_ALERT_LOG
    report_time: str = "16:00"
    mail_transport: str = "command"
    mail_command: str = "mail"
    mail_from: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = False
    command_timeout: int = 10
    retry_cooldown: int = 60
    access_log_lines: int = 5000
    nginx_status_url: str = "http://127.0.0.1/nginx_status"
    auth_log: Path = Path("/var/log/auth.log")
    emit_events: bool = True

    @property
    def report_hour_minute(self) -> tuple:
        hour, minute = self.report_time.split(":")
        return int(hour), int(minute)


_INT_FIELDS = {
    "load_threshold",
    "check_interval",
    "alert_cooldown",
    "smtp_port",
    "command_timeout",
    "retry_cooldown",
    "access_log_lines",
}
_POSITIVE_FIELDS = {"load_threshold", "check_interval", "command_timeout", "access_log_lines", "smtp_port"}
_BOOL_FIELDS = {"smtp_starttls", "emit_events"}
_PATH_FIELDS = {"web_server_log", "log_file", "auth_log"}
_TRANSPORTS = {"command", "smtp"}


def _get_caller() -> Optional[Any]:
    global _CALLER
    if Caller is None or SKIP_SALT:  # type: ignore
        return None
    if _CALLER is None:
        try:
            _CALLER = Caller()  # type: ignore[call-arg]
        except Exception:
            return None
    return _CALLER


def pillar_get(path: str, default: Any = None) -> Any:
    caller = _get_caller()
    if caller is None:
        return default
    try:
        value = caller.cmd("pillar.get", path, default)
    except Exception:
        return default
    return default if value is None else value


def fire_event(tag: str, payload: Dict[str, Any]) -> bool:
    caller = _get_caller()
    if caller is None:
        return False
    try:
        caller.cmd("event.send", tag, payload)
        return True
    except Exception:
        return False


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping; a missing file means no overrides."""
    if not path.exists():
        return {}
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    nested = data.get("loadwatch")
    if isinstance(nested, dict):
        return nested
    return data


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value not in (None, ""):
            result[key] = value
    return result


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ConfigError(f"{key}: expected a boolean, got {value!r}")


def _coerce(key: str, value: Any) -> Any:
    if key == "report_time" and isinstance(value, int) and not isinstance(value, bool):
        # YAML 1.1 reads an unquoted 16:00 as the base-60 integer 960.
        return f"{value // 60:02d}:{value % 60:02d}"
    if key in _INT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"{key}: expected an integer, got {value!r}")
        try:
            return int(str(value).strip())
        except ValueError as exc:
            raise ConfigError(f"{key}: expected an integer, got {value!r}") from exc
    if key in _BOOL_FIELDS:
        return _coerce_bool(key, value)
    if key in _PATH_FIELDS:
        return Path(str(value))
    return "" if value is None else str(value).strip()


def build_config(raw: Mapping[str, Any]) -> MonitorConfig:
    known = {f.name for f in fields(MonitorConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"unknown settings: {', '.join(unknown)}")
    values = {key: _coerce(key, value) for key, value in raw.items()}

    if not values.get("email"):
        raise ConfigError("email: a recipient address is required")
    for key in _POSITIVE_FIELDS:
        if key in values and values[key] <= 0:
            raise ConfigError(f"{key}: must be a positive integer")
    for key in ("alert_cooldown", "retry_cooldown"):
        if key in values and values[key] < 0:
            raise ConfigError(f"{key}: must not be negative")
    report_time = values.get("report_time")
    if report_time is not None and not _REPORT_TIME_RE.match(report_time):
        raise ConfigError(f"report_time: expected 24-hour HH:MM, got {report_time!r}")
    transport = values.get("mail_transport")
    if transport is not None and transport not in _TRANSPORTS:
        raise ConfigError(f"mail_transport: expected one of {sorted(_TRANSPORTS)}, got {transport!r}")
    return MonitorConfig(**values)


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    use_pillar: bool = True,
) -> MonitorConfig:
    merged: Dict[str, Any] = {}
    merged.update(load_yaml_file(path or DEFAULT_CONFIG_PATH))
    if use_pillar:
        pillar = pillar_get(PILLAR_KEY, {})
        if isinstance(pillar, dict):
            merged.update(pillar)
    merged.update(env_overrides(os.environ if environ is None else environ))
    return build_config(merged)
