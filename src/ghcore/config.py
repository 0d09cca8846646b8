from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

DEFAULT_USER_AGENT = "ghcore"
DEFAULT_INDEX_URL = "https://www.nuget.org"
DEFAULT_POLL_SLEEP_SECONDS = 5


class ConfigError(RuntimeError):
    pass


@dataclass
class ClientConfig:
    # GitHub endpoint configuration
    api_host: str = "github.com"
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float | None = 30.0
    min_tls_version: str = "TLSv1.2"
    # Update check configuration
    update_check_enabled: bool = True
    update_check_index_url: str = DEFAULT_INDEX_URL
    # Lifecycle polling configuration
    poll_sleep_seconds: int = DEFAULT_POLL_SLEEP_SECONDS
    poll_timeout_seconds: float | None = None
    # Retry configuration
    retry_attempts: int = 3
    retry_base_sleep: float = 0.5
    # Telemetry configuration
    telemetry_enabled: bool = False
    telemetry_store_path: str | None = None
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    source_file: Path | None = field(default=None, repr=False)


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]  # Remove $ prefix
        return os.getenv(env_name, value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name, {}) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Configuration section '{name}' must be a mapping")
    return {k: _resolve_env_var(v) for k, v in section.items()}


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _flag(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _apply_environment(cfg: ClientConfig) -> ClientConfig:
    host = os.environ.get("GHCORE_API_HOST")
    if host:
        cfg.api_host = host
    disable_check = _flag(os.environ.get("GHCORE_DISABLE_UPDATE_CHECK"))
    if disable_check is not None:
        cfg.update_check_enabled = not disable_check
    telemetry_flag = os.environ.get("GHCORE_TELEMETRY")
    if telemetry_flag is not None:
        cfg.telemetry_enabled = telemetry_flag == "1"
    telemetry_path = os.environ.get("GHCORE_TELEMETRY_PATH")
    if telemetry_path:
        cfg.telemetry_store_path = telemetry_path
    attempts = os.environ.get("GHCORE_RETRY_ATTEMPTS")
    if attempts:
        cfg.retry_attempts = int(attempts)
    base = os.environ.get("GHCORE_RETRY_BASE")
    if base:
        cfg.retry_base_sleep = float(base)
    return cfg


def load_config(path: str | Path | None = None) -> ClientConfig:
    """Load client configuration.

    With no ``path`` the defaults are used, adjusted by ``GHCORE_*``
    environment variables. A YAML file may reference environment variables as
    ``$NAME``; when ``environment.load_dotenv`` is true (the default) a
    ``.env`` file is loaded first so those references can resolve.
    """
    if path is None:
        return _apply_environment(ClientConfig())
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration root in {p} must be a mapping")
    raw = cast(dict[str, Any], loaded)

    env_section = raw.get('environment', {}) or {}
    if bool(env_section.get('load_dotenv', True)):
        dotenv_path = env_section.get('dotenv_path')
        env_file = p.parent / dotenv_path if dotenv_path else p.parent / '.env'
        if env_file.exists():
            load_dotenv(str(env_file))

    gh = _section(raw, 'github')
    update_check = _section(raw, 'update_check')
    polling = _section(raw, 'polling')
    retry = _section(raw, 'retry')
    telemetry = _section(raw, 'telemetry')
    logging_config = _section(raw, 'logging')

    try:
        cfg = ClientConfig(
            api_host=str(gh.get('api_host', 'github.com')),
            user_agent=str(gh.get('user_agent', DEFAULT_USER_AGENT)),
            timeout_seconds=_optional_float(gh.get('timeout_seconds', 30.0)),
            min_tls_version=str(gh.get('min_tls_version', 'TLSv1.2')),
            update_check_enabled=bool(update_check.get('enabled', True)),
            update_check_index_url=str(update_check.get('index_url', DEFAULT_INDEX_URL)),
            poll_sleep_seconds=int(polling.get('sleep_seconds', DEFAULT_POLL_SLEEP_SECONDS)),
            poll_timeout_seconds=_optional_float(polling.get('timeout_seconds')),
            retry_attempts=int(retry.get('attempts', 3)),
            retry_base_sleep=float(retry.get('base_sleep', 0.5)),
            telemetry_enabled=bool(telemetry.get('enabled', False)),
            telemetry_store_path=telemetry.get('store_path'),
            logging_json_enabled=bool(logging_config.get('json_enabled', False)),
            logging_level=str(logging_config.get('level', 'INFO')),
            source_file=p,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {p}: {exc}") from exc
    return _apply_environment(cfg)


__all__ = ["ClientConfig", "ConfigError", "load_config"]
