from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def load_relay_config_from_env() -> RelayConfig:
    defaults = RelayConfig()
    return RelayConfig(
        host=os.environ.get("GRAPH_RELAY_HOST") or defaults.host,
        port=_parse_positive_int("GRAPH_RELAY_PORT", defaults.port),
        ping_interval_s=_parse_positive_int("GRAPH_RELAY_PING_INTERVAL_S", defaults.ping_interval_s),
        ping_miss_limit=_parse_positive_int("GRAPH_RELAY_PING_MISS_LIMIT", defaults.ping_miss_limit),
        max_msg_size=_parse_positive_int("GRAPH_RELAY_MAX_MSG_SIZE", defaults.max_msg_size),
    )
