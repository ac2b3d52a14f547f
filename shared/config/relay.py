"""
Relay configuration.

Sources, lowest to highest precedence:
  - dataclass defaults
  - shared/config/relay.json (or RELAY_CONFIG_PATH), schema-checked against
    shared/config/relay.schema.json; problems are logged and the field falls back
  - environment (MJ_BASE_URL, PLAYER_ID, CLIENT_HOST, CLIENT_PORT,
    CHAT_HISTORY_CAPACITY), usually populated from .env by python-dotenv
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator

from shared.logging.logger import get_logger

log = get_logger("shared.config.relay")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "relay.json"
SCHEMA_PATH = Path(__file__).resolve().parent / "relay.schema.json"


@dataclass
class UpstreamConfig:
    base_url: str = "http://localhost:4000"
    player_id: str = "p1"
    retry_seconds: float = 3.0
    connect_timeout: float = 10.0
    action_timeout: float = 10.0


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 4101
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    keepalive_seconds: float = 15.0
    write_timeout_seconds: float = 30.0
    max_pending_frames: int = 1000


@dataclass
class HistoryConfig:
    chat_capacity: int = 200


@dataclass
class RelayConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.debug(f"relay config not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load relay config ({e}); using defaults")
        return {}

    if not isinstance(data, dict):
        log.warning("relay config root is not an object; ignoring")
        return {}
    return data


def load_schema(path: Path = SCHEMA_PATH) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def schema_errors(raw: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> List[str]:
    """Return human-readable validation errors ('' location means the root)."""
    validator = Draft7Validator(schema if schema is not None else load_schema())
    errors = sorted(validator.iter_errors(raw), key=lambda e: list(e.path))
    return [f"{'/'.join(str(p) for p in err.path)}: {err.message}" for err in errors]


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def _coerce(value: Any, kind: type, default: Any, name: str) -> Any:
    if value is None:
        return default
    if isinstance(value, bool):
        log.warning(f"{name} must be {kind.__name__}; using default {default!r}")
        return default
    try:
        return kind(value)
    except (TypeError, ValueError):
        log.warning(f"{name} must be {kind.__name__}; using default {default!r}")
        return default


def _positive(value: Any, default: Any, name: str, *, allow_zero: bool = False) -> Any:
    if value < 0 or (value == 0 and not allow_zero):
        log.warning(f"{name} out of range ({value!r}); using default {default!r}")
        return default
    return value


def _load_upstream(raw: Dict[str, Any], env: Mapping[str, str]) -> UpstreamConfig:
    d = UpstreamConfig()
    base_url = env.get("MJ_BASE_URL") or raw.get("base_url") or d.base_url
    player_id = env.get("PLAYER_ID") or raw.get("player_id") or d.player_id

    retry = _coerce(raw.get("retry_seconds"), float, d.retry_seconds, "upstream.retry_seconds")
    connect = _coerce(raw.get("connect_timeout"), float, d.connect_timeout, "upstream.connect_timeout")
    action = _coerce(raw.get("action_timeout"), float, d.action_timeout, "upstream.action_timeout")

    return UpstreamConfig(
        base_url=str(base_url).rstrip("/"),
        player_id=str(player_id),
        retry_seconds=_positive(retry, d.retry_seconds, "upstream.retry_seconds", allow_zero=True),
        connect_timeout=_positive(connect, d.connect_timeout, "upstream.connect_timeout"),
        action_timeout=_positive(action, d.action_timeout, "upstream.action_timeout"),
    )


def _load_api(raw: Dict[str, Any], env: Mapping[str, str]) -> ApiConfig:
    d = ApiConfig()
    host = env.get("CLIENT_HOST") or raw.get("host") or d.host

    port = _coerce(env.get("CLIENT_PORT") or raw.get("port"), int, d.port, "api.port")
    if not 0 <= port <= 65535:
        log.warning(f"api.port out of range ({port}); using default {d.port}")
        port = d.port

    origins_raw = raw.get("allow_origins")
    if isinstance(origins_raw, list):
        origins = [str(o) for o in origins_raw if isinstance(o, str)]
    else:
        origins = list(d.allow_origins)

    keepalive = _coerce(raw.get("keepalive_seconds"), float, d.keepalive_seconds, "api.keepalive_seconds")
    write_timeout = _coerce(
        raw.get("write_timeout_seconds"), float, d.write_timeout_seconds, "api.write_timeout_seconds"
    )
    max_pending = _coerce(raw.get("max_pending_frames"), int, d.max_pending_frames, "api.max_pending_frames")

    return ApiConfig(
        host=str(host),
        port=port,
        allow_origins=origins,
        keepalive_seconds=_positive(keepalive, d.keepalive_seconds, "api.keepalive_seconds"),
        write_timeout_seconds=_positive(write_timeout, d.write_timeout_seconds, "api.write_timeout_seconds"),
        max_pending_frames=_positive(max_pending, d.max_pending_frames, "api.max_pending_frames"),
    )


def _load_history(raw: Dict[str, Any], env: Mapping[str, str]) -> HistoryConfig:
    d = HistoryConfig()
    capacity = _coerce(
        env.get("CHAT_HISTORY_CAPACITY") or raw.get("chat_capacity"),
        int,
        d.chat_capacity,
        "history.chat_capacity",
    )
    return HistoryConfig(
        chat_capacity=_positive(capacity, d.chat_capacity, "history.chat_capacity"),
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_relay_config(
    raw: Optional[Dict[str, Any]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    path: Optional[Path] = None,
) -> RelayConfig:
    env = os.environ if env is None else env

    if raw is None:
        config_path = path or Path(env.get("RELAY_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
        raw = _load_json(config_path)

    for problem in schema_errors(raw):
        log.warning(f"relay config validation warning at {problem}")

    return RelayConfig(
        upstream=_load_upstream(_section(raw, "upstream"), env),
        api=_load_api(_section(raw, "api"), env),
        history=_load_history(_section(raw, "history"), env),
    )


__all__ = [
    "ApiConfig",
    "HistoryConfig",
    "RelayConfig",
    "UpstreamConfig",
    "load_relay_config",
    "load_schema",
    "schema_errors",
]
