"""XDG config loading/saving."""

from __future__ import annotations

import logging as py_logging
import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from authgate.errors import AuthGateError, ExitCode
from authgate.logging import LOG_LEVELS, normalize_level
from authgate.retry import RetryPolicy

DEFAULT_CONFIG_PATH = Path("~/.config/authgate/config.toml").expanduser()
LOG_LEVEL_ENV = "AUTHGATE_LOG_LEVEL"

logger = py_logging.getLogger(__name__)

LogLevel = Literal["DEBUG", "INFO", "WARN", "ERROR"]

_TOP_LEVEL_KEYS = {"log_level", "retry", "demo"}


class RetrySettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    max_attempts: int = Field(default=3, ge=1, le=20)
    initial_backoff_seconds: float = Field(default=0.5, ge=0.0, le=60.0)
    multiplier: float = Field(default=2.0, ge=0.0, le=10.0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_backoff_seconds=self.initial_backoff_seconds,
            multiplier=self.multiplier,
        )


class DemoSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    failures_before_success: int = Field(default=2, ge=0, le=100)
    callers: int = Field(default=3, ge=1, le=100)
    rounds: int = Field(default=4, ge=1, le=100)
    latency_seconds: float = Field(default=0.05, ge=0.0, le=10.0)


class GateSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    log_level: LogLevel = "INFO"
    retry: RetrySettings = Field(default_factory=RetrySettings)
    demo: DemoSettings = Field(default_factory=DemoSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return normalize_level(value)
        return value


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _assign_fields(model: BaseModel, raw: object, section: str) -> None:
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning("Ignoring config section %s: expected a table", section)
        return
    for key, value in raw.items():
        if key not in type(model).model_fields:
            logger.warning("Ignoring unknown config key %s.%s", section, key)
            continue
        try:
            setattr(model, key, value)
        except ValidationError:
            logger.warning("Ignoring invalid config value %s.%s=%r", section, key, value)


def _sanitize(raw: dict[str, object]) -> GateSettings:
    cfg = GateSettings()

    for key in raw:
        if key not in _TOP_LEVEL_KEYS:
            logger.warning("Ignoring unknown config key %s", key)

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str) and normalize_level(log_level) in LOG_LEVELS:
        cfg.log_level = cast(LogLevel, normalize_level(log_level))
    else:
        logger.warning("Ignoring invalid config value log_level=%r", log_level)

    _assign_fields(cfg.retry, raw.get("retry"), "retry")
    _assign_fields(cfg.demo, raw.get("demo"), "demo")
    return cfg


def _apply_env(cfg: GateSettings) -> GateSettings:
    env_level = os.getenv(LOG_LEVEL_ENV, "").strip()
    if env_level and normalize_level(env_level) in LOG_LEVELS:
        cfg.log_level = cast(LogLevel, normalize_level(env_level))
    return cfg


def load_config(path: str | Path | None = None, *, strict: bool = False) -> GateSettings:
    """Load settings, falling back to defaults.

    With ``strict`` a missing or unreadable file raises instead, which is what
    an explicitly requested config file wants.
    """
    resolved = get_config_path(path)
    if not resolved.exists():
        if strict:
            raise AuthGateError(
                f"Config file not found: {resolved}",
                code=ExitCode.CONFIG_ERROR,
                hint="Create it with --write-config.",
            )
        return _apply_env(GateSettings())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        if strict:
            raise AuthGateError(
                f"Config file is not valid TOML: {resolved}",
                code=ExitCode.CONFIG_ERROR,
                hint=str(exc),
            ) from exc
        logger.warning("Ignoring unreadable config file %s: %s", resolved, exc)
        return _apply_env(GateSettings())
    return _apply_env(_sanitize(raw))


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def save_config(config: GateSettings, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [f"log_level = {_toml_scalar(config.log_level)}"]
    for section, model in (("retry", config.retry), ("demo", config.demo)):
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in model.model_dump().items():
            lines.append(f"{key} = {_toml_scalar(value)}")

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
