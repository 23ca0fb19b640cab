"""Configuration: required bridge environment plus optional YAML settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigurationError

ACCOUNT_ENV = "SUPABASE_ACCOUNT"
AUTH_TOKEN_ENV = "MCP_AUTH_TOKEN"
SERVER_URL_ENV = "ASSISTANT_MCP_URL"

REQUIRED_ENV_VARS = (ACCOUNT_ENV, AUTH_TOKEN_ENV, SERVER_URL_ENV)

ENV_DESCRIPTIONS: dict[str, str] = {
    ACCOUNT_ENV: 'Account identifier (e.g., "eliteteam" or "personal")',
    AUTH_TOKEN_ENV: "Bearer token for credential service authentication",
    SERVER_URL_ENV: "URL of the credential service",
}

_DEFAULT_CLI_PATH = "supabase"
_DEFAULT_COMMAND_TIMEOUT = 300.0
_DEFAULT_MAX_OUTPUT_BYTES = 32 * 1024 * 1024  # generated type files can be large
_DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class BridgeConfig:
    account: str
    auth_token: str
    server_url: str


@dataclass
class Settings:
    cli_path: str = _DEFAULT_CLI_PATH
    command_timeout: float = _DEFAULT_COMMAND_TIMEOUT
    max_output_bytes: int = _DEFAULT_MAX_OUTPUT_BYTES
    log_level: str = _DEFAULT_LOG_LEVEL


def missing_env_vars(environ: Mapping[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    return [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]


def resolve_config(environ: Mapping[str, str] | None = None) -> BridgeConfig:
    """Read the three required settings, failing before any I/O if one is absent.

    Values are re-read on every call; nothing is cached.
    """
    env = os.environ if environ is None else environ
    missing = missing_env_vars(env)
    if missing:
        raise ConfigurationError(missing)
    return BridgeConfig(
        account=env[ACCOUNT_ENV].strip(),
        auth_token=env[AUTH_TOKEN_ENV].strip(),
        server_url=env[SERVER_URL_ENV].strip(),
    )


def get_account_name(environ: Mapping[str, str] | None = None) -> str:
    return resolve_config(environ).account


def _get_config_path() -> Path:
    return Path.home() / ".supabase-mcp" / "config.yaml"


def _as_float(raw: dict[str, Any], key: str, env_name: str, default: float) -> float:
    value = raw.get(key, os.environ.get(env_name, default))
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key} must be a number, got {value!r}") from e
    if result <= 0:
        raise ValueError(f"{key} must be positive, got {value!r}")
    return result


def load_settings(config_path: Path | None = None) -> Settings:
    """Load non-secret settings: config.yaml first, then environment, then defaults."""
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path} must contain a YAML mapping")

    cli_path = raw.get("cli_path") or os.environ.get("SUPABASE_CLI_PATH", _DEFAULT_CLI_PATH)
    command_timeout = _as_float(raw, "command_timeout", "SUPABASE_MCP_COMMAND_TIMEOUT", _DEFAULT_COMMAND_TIMEOUT)
    max_output_bytes = int(
        _as_float(raw, "max_output_bytes", "SUPABASE_MCP_MAX_OUTPUT_BYTES", _DEFAULT_MAX_OUTPUT_BYTES)
    )
    log_level = str(raw.get("log_level") or os.environ.get("SUPABASE_MCP_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()

    return Settings(
        cli_path=str(cli_path),
        command_timeout=command_timeout,
        max_output_bytes=max_output_bytes,
        log_level=log_level,
    )
