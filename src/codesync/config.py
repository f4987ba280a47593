"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from codesync.execution import DEFAULT_COMPILE_TIMEOUT_MS, DEFAULT_EXECUTION_URL, DEFAULT_RUN_TIMEOUT_MS
from codesync.identity import DEFAULT_IDENTITY_PATH
from codesync.languages import supported_languages

DEFAULT_CONFIG_PATH = Path("~/.config/codesync/config.toml").expanduser()
DEFAULT_SERVER_URL = "ws://localhost:5000"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 20
SERVER_URL_ENV = "CODESYNC_SERVER_URL"
EXECUTION_URL_ENV = "CODESYNC_EXECUTION_URL"

_MAX_TIMEOUT_MS = 60000
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    server_url: str = DEFAULT_SERVER_URL
    execution_api_url: str = DEFAULT_EXECUTION_URL
    compile_timeout_ms: int = Field(default=DEFAULT_COMPILE_TIMEOUT_MS, ge=1, le=_MAX_TIMEOUT_MS)
    run_timeout_ms: int = Field(default=DEFAULT_RUN_TIMEOUT_MS, ge=1, le=_MAX_TIMEOUT_MS)
    request_timeout_seconds: int = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, ge=1, le=120)
    default_language: Literal["javascript", "python"] = "javascript"
    identity_path: str = str(DEFAULT_IDENTITY_PATH)
    log_level: str = "INFO"

    @field_validator("server_url")
    @classmethod
    def _validate_server_url(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid relay server URL: {value}")
        return value

    @field_validator("execution_api_url")
    @classmethod
    def _validate_execution_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Invalid execution service URL: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _assign(cfg: AppConfig, field: str, value: object) -> None:
    # One bad field must not discard the rest of the file.
    try:
        setattr(cfg, field, value)
    except ValueError:
        pass


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for field in ("server_url", "execution_api_url", "identity_path", "log_level"):
        value = raw.get(field)
        if isinstance(value, str) and value.strip():
            _assign(cfg, field, value.strip())

    for field in ("compile_timeout_ms", "run_timeout_ms", "request_timeout_seconds"):
        value = raw.get(field)
        if isinstance(value, int) and not isinstance(value, bool):
            _assign(cfg, field, value)

    default_language = raw.get("default_language")
    if isinstance(default_language, str) and default_language in supported_languages():
        cfg.default_language = cast(Literal["javascript", "python"], default_language)

    return cfg


def _apply_env(cfg: AppConfig) -> AppConfig:
    server_url = os.getenv(SERVER_URL_ENV, "").strip()
    if server_url:
        _assign(cfg, "server_url", server_url)
    execution_url = os.getenv(EXECUTION_URL_ENV, "").strip()
    if execution_url:
        _assign(cfg, "execution_api_url", execution_url)
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _apply_env(AppConfig())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _apply_env(AppConfig())
    if not isinstance(raw, dict):
        return _apply_env(AppConfig())
    return _apply_env(_sanitize(raw))


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"server_url = {_toml_scalar(config.server_url)}",
        f"execution_api_url = {_toml_scalar(config.execution_api_url)}",
        f"compile_timeout_ms = {_toml_scalar(config.compile_timeout_ms)}",
        f"run_timeout_ms = {_toml_scalar(config.run_timeout_ms)}",
        f"request_timeout_seconds = {_toml_scalar(config.request_timeout_seconds)}",
        f"default_language = {_toml_scalar(config.default_language)}",
        f"identity_path = {_toml_scalar(config.identity_path)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
