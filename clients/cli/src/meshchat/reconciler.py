from __future__ import annotations

import bisect
import logging
import math
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    id: str
    text: str
    author_alias: str
    author_public_key: str
    timestamp_ms: int

    @property
    def sort_key(self) -> Tuple[int, str]:
        # newest first; equal timestamps fall back to id order
        return (-self.timestamp_ms, self.id)

    def to_wire(self) -> Dict[str, Any]:
        return message_payload(self.text, self.author_alias, self.author_public_key, self.timestamp_ms)


def message_payload(text: str, alias: str, public_key: str, time_ms: int) -> Dict[str, Any]:
    """The record written to a room path: ``{msg, user, pub, time}``."""

    return {"msg": text, "user": alias, "pub": public_key, "time": int(time_ms)}


def new_message_id() -> str:
    return secrets.token_urlsafe(12)


def parse_message(value: Any, key: str) -> Optional[Message]:
    """Build a :class:`Message` from a raw room event, or ``None`` if malformed."""

    if not isinstance(value, dict) or not key:
        return None
    text = value.get("msg")
    if not isinstance(text, str) or not text:
        return None
    time_ms = value.get("time")
    if isinstance(time_ms, bool) or not isinstance(time_ms, (int, float)) or not math.isfinite(time_ms):
        return None
    return Message(
        id=key,
        text=text,
        author_alias=str(value.get("user") or ""),
        author_public_key=str(value.get("pub") or ""),
        timestamp_ms=int(time_ms),
    )


class MessageReconciler:
    """Canonical message list for one room.

    Events are merged by id, so duplicate deliveries are no-ops, and each
    insert lands at its sorted position (``timestamp_ms`` descending, then id
    ascending). The whole merge runs inside one :meth:`on_event` call.
    """

    def __init__(self, room_id: str, on_insert: Callable[[Message], None] | None = None) -> None:
        self.room_id = room_id
        self._on_insert = on_insert
        self._messages: List[Message] = []
        self._ids: set[str] = set()
        self._snapshot: Tuple[Message, ...] = ()

    def on_event(self, value: Any, key: str) -> bool:
        """Apply one raw event; returns True when a new message was stored."""

        if key in self._ids:
            return False
        message = parse_message(value, key)
        if message is None:
            log.debug("dropped malformed event %r in room %s", key, self.room_id)
            return False
        bisect.insort(self._messages, message, key=lambda item: item.sort_key)
        self._ids.add(message.id)
        self._snapshot = tuple(self._messages)
        if self._on_insert is not None:
            self._on_insert(message)
        return True

    def messages(self) -> Tuple[Message, ...]:
        return self._snapshot

    def latest(self) -> Optional[Message]:
        return self._snapshot[0] if self._snapshot else None

    def newer_than(self, timestamp_ms: int) -> List[Message]:
        return [message for message in self._snapshot if message.timestamp_ms > timestamp_ms]

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._messages)
