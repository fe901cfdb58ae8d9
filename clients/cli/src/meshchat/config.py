from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from .rooms import GLOBAL_ROOM_PATH, PRIVATE_CHATS_PATH

DEFAULT_PEERS = ("http://127.0.0.1:8765/gun",)


@dataclass(frozen=True)
class ClientConfig:
    peers: Tuple[str, ...] = DEFAULT_PEERS
    global_room_path: str = GLOBAL_ROOM_PATH
    private_namespace: str = PRIVATE_CHATS_PATH
    state_dir: Path = field(default_factory=lambda: Path.home() / ".meshchat")
    reconnect_delay_s: float = 1.0
    read_timeout_s: float = 5.0

    @property
    def session_path(self) -> Path:
        return self.state_dir / "session.json"


def _parse_positive_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_peers(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    peers = tuple(peer.strip() for peer in raw.split(",") if peer.strip())
    for peer in peers:
        if not peer.lower().startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError(f"{name} entries must be http(s) or ws(s) URLs")
    return peers or default


def _parse_path_segment(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    if "/" in raw:
        raise ValueError(f"{name} must not contain '/'")
    return raw


def load_client_config_from_env() -> ClientConfig:
    state_dir = os.environ.get("MESHCHAT_STATE_DIR")
    defaults = ClientConfig()
    return ClientConfig(
        peers=_parse_peers("MESHCHAT_PEERS", defaults.peers),
        global_room_path=_parse_path_segment("MESHCHAT_GLOBAL_ROOM", defaults.global_room_path),
        private_namespace=_parse_path_segment("MESHCHAT_PRIVATE_NAMESPACE", defaults.private_namespace),
        state_dir=Path(state_dir).expanduser() if state_dir else defaults.state_dir,
        reconnect_delay_s=_parse_positive_float("MESHCHAT_RECONNECT_DELAY_S", defaults.reconnect_delay_s),
        read_timeout_s=_parse_positive_float("MESHCHAT_READ_TIMEOUT_S", defaults.read_timeout_s),
    )
