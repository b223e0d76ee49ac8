from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    if isinstance(value, bool):
        raise ConfigError(f"Invalid int for {key}: {value!r}")
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _as_str_list(value: Any, *, key: str) -> tuple[str, ...]:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"Invalid list for {key}: {value!r}")
    out: list[str] = []
    for item in value:
        s = str(item).strip()
        if not s:
            raise ConfigError(f"Invalid {key}: empty program name")
        out.append(s)
    return tuple(out)


def _require_positive(value: int, *, key: str) -> int:
    if value <= 0:
        raise ConfigError(f"Invalid {key}: must be > 0, got {value}")
    return value


def _require_non_negative(value: int, *, key: str) -> int:
    if value < 0:
        raise ConfigError(f"Invalid {key}: must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class ExecutionConfig:
    timeout_s: int


@dataclass(frozen=True)
class ProgramsConfig:
    """Whitelist of command names that may be submitted."""

    allowed: tuple[str, ...]

    def is_allowed(self, command: str) -> bool:
        return command in self.allowed


@dataclass(frozen=True)
class CacheConfig:
    cache_time_s: int
    sweep_interval_s: float = 10.0


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"
    format: str = "console"


@dataclass(frozen=True)
class AppConfig:
    execution: ExecutionConfig
    programs: ProgramsConfig
    cache: CacheConfig
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()


def default_config_path() -> Path:
    return Path(os.getenv("CMDEXEC_CONFIG_PATH", "config/default.toml")).expanduser().resolve()


def _read_raw(cfg_path: Path) -> dict[str, Any]:
    text = cfg_path.read_text(encoding="utf-8")
    if cfg_path.suffix.lower() == ".json":
        try:
            flat = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON config {cfg_path}: {e}") from e
        if not isinstance(flat, dict):
            raise ConfigError(f"Invalid JSON config {cfg_path}: top-level value must be an object")
        # Flat legacy layout: {"timeout": 5, "programs": [...], "cacheTime": 60}
        return {
            "execution": {"timeout_s": flat.get("timeout")},
            "programs": {"allowed": flat.get("programs")},
            "cache": {"cache_time_s": flat.get("cacheTime")},
        }

    import tomllib

    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML config {cfg_path}: {e}") from e


def build_app_config(raw: dict[str, Any]) -> AppConfig:
    execution = raw.get("execution", {}) or {}
    programs = raw.get("programs", {}) or {}
    cache = raw.get("cache", {}) or {}
    server = raw.get("server", {}) or {}
    logging_ = raw.get("logging", {}) or {}

    log_format = _as_str(logging_.get("format", "console"), key="logging.format").strip().lower()
    if log_format not in {"console", "json"}:
        raise ConfigError(f"Invalid logging.format: must be 'console' or 'json', got {log_format!r}")

    sweep_interval_s = _as_float(cache.get("sweep_interval_s", 10.0), key="cache.sweep_interval_s")
    if sweep_interval_s <= 0:
        raise ConfigError(f"Invalid cache.sweep_interval_s: must be > 0, got {sweep_interval_s}")

    return AppConfig(
        execution=ExecutionConfig(
            timeout_s=_require_positive(
                _as_int(execution.get("timeout_s"), key="execution.timeout_s"),
                key="execution.timeout_s",
            ),
        ),
        programs=ProgramsConfig(
            allowed=_as_str_list(programs.get("allowed"), key="programs.allowed"),
        ),
        cache=CacheConfig(
            cache_time_s=_require_non_negative(
                _as_int(cache.get("cache_time_s"), key="cache.cache_time_s"),
                key="cache.cache_time_s",
            ),
            sweep_interval_s=sweep_interval_s,
        ),
        server=ServerConfig(
            host=_as_str(server.get("host", "127.0.0.1"), key="server.host"),
            port=_as_int(server.get("port", 8080), key="server.port"),
        ),
        logging=LoggingConfig(
            level=_as_str(logging_.get("level", "info"), key="logging.level").strip().lower(),
            format=log_format,
        ),
    )


def load_app_config(path: Path | None = None) -> AppConfig:
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    return build_app_config(_read_raw(cfg_path))
