"""Configuration helpers for the P2P rate watcher.

Only transport and logging settings live here. The request filter, the
refresh interval and the page count are fixed in code.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS, ONLINE_ITEMS_PATH

CONFIG_ENV_VAR = "P2PWATCH_CONFIG"


class ConfigNotFoundError(FileNotFoundError):
    """Raised when an explicitly requested config file is missing."""


@dataclass
class EndpointConfig:
    """Where and how the online-items endpoint is reached."""

    base_url: str = DEFAULT_BASE_URL
    path: str = ONLINE_ITEMS_PATH
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass
class WatchConfig:
    """Top-level watcher configuration."""

    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    log_level: str = "INFO"


# $VAR, ${VAR} or ${VAR:-fallback}; unset variables without a fallback are left verbatim.
_ENV_TOKEN = re.compile(r"\$\{(?P<braced>[A-Za-z0-9_]+)(?::-(?P<fallback>[^}]*))?\}|\$(?P<bare>[A-Za-z0-9_]+)")


def _load_mapping(path: Path) -> Mapping[str, Any]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported config extension for {path}")
    if not isinstance(data, Mapping):
        raise ValueError(f"Config file {path} must contain a mapping at the top level.")
    return _expand_env(data)


def _expand_env(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if not isinstance(value, str):
        return value
    return _ENV_TOKEN.sub(_resolve_env_token, value)


def _resolve_env_token(match: re.Match[str]) -> str:
    name = match.group("braced") or match.group("bare")
    resolved = os.environ.get(name)
    if resolved is not None:
        return resolved
    fallback = match.group("fallback")
    return match.group(0) if fallback is None else fallback


def _check_keys(section: str, payload: Mapping[str, Any], cls: type) -> None:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValueError(f"Unknown {section} config keys: {', '.join(unknown)}")


def _coerce_endpoint(payload: Mapping[str, Any]) -> EndpointConfig:
    _check_keys("endpoint", payload, EndpointConfig)
    params = dict(payload)
    if "timeout_seconds" in params:
        params["timeout_seconds"] = float(params["timeout_seconds"])
    cfg = EndpointConfig(**params)
    if cfg.timeout_seconds <= 0:
        raise ValueError("endpoint.timeout_seconds must be positive.")
    return cfg


def load_watch_config(path: Optional[str] = None) -> WatchConfig:
    """
    Load configuration from disk or return defaults.

    ``path`` falls back to the ``P2PWATCH_CONFIG`` environment variable.
    YAML and JSON are supported; ``$VAR``/``${VAR}`` tokens in string values
    are expanded from the environment.
    """
    resolved = path or os.getenv(CONFIG_ENV_VAR)
    if not resolved:
        return WatchConfig()

    config_path = Path(resolved).expanduser()
    if not config_path.is_file():
        raise ConfigNotFoundError(f"Config file not found: {config_path}")

    data = dict(_load_mapping(config_path))
    _check_keys("top-level", data, WatchConfig)

    endpoint_payload = data.get("endpoint") or {}
    if not isinstance(endpoint_payload, Mapping):
        raise ValueError("'endpoint' must be a mapping.")

    return WatchConfig(
        endpoint=_coerce_endpoint(endpoint_payload),
        log_level=str(data.get("log_level") or "INFO"),
    )


__all__ = [
    "ConfigNotFoundError",
    "EndpointConfig",
    "WatchConfig",
    "load_watch_config",
]
