"""
Environment-variable configuration for adapter servers.

Each backend declares a pydantic config model next to its adapter and
builds it with ``from_env()``. The helpers here read and type-check the
raw variables; a missing required variable or an unparseable value raises
ConfigError before any backend resource is acquired.

Values may also come from a ``.env`` file in the working directory
(loaded by the server entry point through python-dotenv).
"""

from __future__ import annotations

import os
from typing import Any, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from mcp_adapters.errors import ConfigError

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")

M = TypeVar("M", bound=BaseModel)


def load_env_file() -> None:
    """Load ``.env`` without overriding variables already set."""
    load_dotenv(override=False)


def env_str(name: str, default: str | None = None, *, required: bool = False) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        if required:
            raise ConfigError(f"Missing required environment variable: {name}")
        return default
    return value


def env_int(name: str, default: int | None = None) -> int | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def env_float(name: str, default: float | None = None) -> float | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got {value!r}")


def build_config(model: type[M], **values: Any) -> M:
    """Construct a config model, turning validation errors into ConfigError."""
    try:
        return model(**{k: v for k, v in values.items() if v is not None})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid {model.__name__}: {problems}") from e


def call_timeout_from_env() -> float | None:
    """Per-call deadline in seconds from MCP_CALL_TIMEOUT (unset = no deadline)."""
    timeout = env_float("MCP_CALL_TIMEOUT")
    if timeout is not None and timeout <= 0:
        raise ConfigError(f"MCP_CALL_TIMEOUT must be positive, got {timeout}")
    return timeout
