"""Run configuration.

A single frozen :class:`FetchConfig` is built at startup from, in increasing
precedence, built-in defaults, an optional YAML file, the process environment
and CLI flags. It is then passed explicitly to every component.
"""

from __future__ import annotations

import dataclasses
import math
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from car_fetch.__version__ import __version__
from car_fetch.exceptions import ConfigValidationError

DEFAULT_API_BASE = "https://api.sp-tool.allocator.tech"

OS_FAMILIES = ("macos", "debian", "fedora", "arch", "windows", "unknown")

# Environment variable -> config field.
ENV_VARS: dict[str, str] = {
    "API_BASE": "api_base",
    "POLL_INTERVAL": "poll_interval",
    "POLL_MAX_INTERVAL": "poll_max_interval",
    "POLL_TIMEOUT": "poll_timeout",
    "SYNC_TIMEOUT": "sync_timeout",
    "ALLOW_COPY": "allow_copy",
    "PREFER_IPFS_CAR": "prefer_ipfs_car",
    "OS_FAMILY": "os_family",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclasses.dataclass(frozen=True)
class FetchConfig:
    api_base: str = DEFAULT_API_BASE
    poll_interval: float = 2.0
    poll_max_interval: float = 15.0
    poll_step: float = 1.0
    poll_timeout: float = 900.0
    sync_timeout: float = 900.0
    allow_copy: bool = False
    prefer_ipfs_car: bool = False
    os_family: str | None = None
    connect_timeout: float = 10.0
    read_timeout: float = 20.0
    transport_retries: int = 5
    user_agent: str = f"car-fetch/{__version__}"

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def request_timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


def _field_types() -> dict[str, Any]:
    return {f.name: f.type for f in dataclasses.fields(FetchConfig)}


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigValidationError(
        f"{name} must be a boolean flag, got {value!r}",
        context={"field": name, "value": value},
    )


def _coerce_number(name: str, value: Any, kind: type) -> float | int:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(
            f"{name} must be a number, got {value!r}",
            context={"field": name, "value": value},
        ) from exc


def coerce_fields(values: Mapping[str, Any]) -> dict[str, Any]:
    """Convert raw strings (env, YAML) to the field types of FetchConfig."""
    types = _field_types()
    out: dict[str, Any] = {}
    for name, value in values.items():
        if name not in types:
            raise ConfigValidationError(
                f"Unknown configuration key: {name}",
                context={"field": name},
            )
        if value is None:
            continue
        kind = types[name]
        if kind == "bool":
            out[name] = _coerce_bool(name, value)
        elif kind == "float":
            out[name] = _coerce_number(name, value, float)
        elif kind == "int":
            out[name] = _coerce_number(name, value, int)
        else:
            out[name] = str(value)
    return out


def validate_config(cfg: FetchConfig) -> None:
    if not cfg.api_base.startswith(("http://", "https://")):
        raise ConfigValidationError(
            f"api_base must be an http(s) URL, got {cfg.api_base!r}",
            context={"field": "api_base", "value": cfg.api_base},
        )
    for name in (
        "poll_interval",
        "poll_max_interval",
        "poll_timeout",
        "sync_timeout",
        "connect_timeout",
        "read_timeout",
    ):
        value = getattr(cfg, name)
        if not math.isfinite(value) or value <= 0:
            raise ConfigValidationError(
                f"{name} must be a positive finite number, got {value!r}",
                context={"field": name, "value": value},
            )
    if not math.isfinite(cfg.poll_step) or cfg.poll_step < 0:
        raise ConfigValidationError(
            f"poll_step must be a finite non-negative number, got {cfg.poll_step!r}",
            context={"field": "poll_step", "value": cfg.poll_step},
        )
    if cfg.poll_max_interval < cfg.poll_interval:
        raise ConfigValidationError(
            "poll_max_interval must be >= poll_interval",
            context={
                "poll_interval": cfg.poll_interval,
                "poll_max_interval": cfg.poll_max_interval,
            },
        )
    if cfg.transport_retries < 0:
        raise ConfigValidationError(
            "transport_retries must not be negative",
            context={"field": "transport_retries", "value": cfg.transport_retries},
        )
    if cfg.os_family is not None and cfg.os_family not in OS_FAMILIES:
        raise ConfigValidationError(
            f"os_family must be one of {', '.join(OS_FAMILIES)}",
            context={"field": "os_family", "value": cfg.os_family},
        )


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigValidationError(
            f"Cannot read config file {path}: {exc.strerror or exc}",
            context={"path": str(path)},
        ) from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(
            f"YAML parse error in {path}: {exc}",
            context={"path": str(path), "error": str(exc)},
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Config file {path} must contain a mapping",
            context={"path": str(path)},
        )
    return data


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    return {field: environ[var] for var, field in ENV_VARS.items() if var in environ}


def load_config(
    *,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> FetchConfig:
    """Build the run configuration: defaults < YAML file < environment < overrides."""
    merged: dict[str, Any] = {}
    if config_path is not None:
        merged.update(read_config_file(config_path))
    merged.update(env_overrides(os.environ if environ is None else environ))
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
    values = coerce_fields(merged)
    if "api_base" in values:
        values["api_base"] = values["api_base"].rstrip("/")
    return FetchConfig(**values)
