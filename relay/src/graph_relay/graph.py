from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .hub import Callback, Subscription, SubscriptionHub


def _now_ms() -> int:
    return int(time.time() * 1000)


def split_path(path: str) -> Tuple[str, str]:
    """Split ``path`` into ``(parent, key)``; top-level keys have an empty parent."""

    if not isinstance(path, str) or not path:
        raise ValueError("path must be a non-empty string")
    parts = path.split("/")
    if any(not part for part in parts):
        raise ValueError(f"path has an empty segment: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


@dataclass(frozen=True)
class GraphEvent:
    """A single write observed by the graph."""

    parent: str
    key: str
    value: Any
    state_ms: int


class MemoryGraph:
    """In-memory graph of ``path -> value`` with a child index per parent path.

    Subscribing to a path replays every known child and then streams new
    writes. Deliveries are scheduled on the running event loop, one loop
    callback per ``(value, key)`` event, so they never run inline with the
    ``put`` that caused them. Re-subscribing or calling :meth:`replay`
    delivers children again, which is the at-least-once behaviour consumers
    must tolerate. ``None`` values are tombstones and are delivered as-is.
    """

    def __init__(self, *, now_func=_now_ms) -> None:
        self._now = now_func
        self._values: Dict[str, Any] = {}
        self._states: Dict[str, int] = {}
        self._children: Dict[str, Dict[str, None]] = {}
        self._hub = SubscriptionHub()
        self._pending = 0

    def put(self, path: str, value: Any) -> GraphEvent:
        parent, key = split_path(path)
        state_ms = self._now()
        self._values[path] = value
        self._states[path] = state_ms
        self._children.setdefault(parent, {})[key] = None
        event = GraphEvent(parent=parent, key=key, value=value, state_ms=state_ms)
        for subscription in self._hub.listeners(parent):
            self._schedule(subscription, value, key)
        return event

    def subscribe(self, path: str, callback: Callback) -> Subscription:
        subscription = self._hub.subscribe(path, callback)
        for key, value in self.children(path):
            self._schedule(subscription, value, key)
        return subscription

    def get(self, path: str) -> Any:
        return self._values.get(path)

    async def read_once(self, path: str) -> Any:
        await asyncio.sleep(0)
        return self._values.get(path)

    def children(self, path: str) -> List[Tuple[str, Any]]:
        prefix = f"{path}/" if path else ""
        return [(key, self._values.get(prefix + key)) for key in self._children.get(path, {})]

    def replay(self, path: str) -> int:
        """Re-deliver every child of ``path`` to its current listeners."""

        delivered = 0
        for subscription in self._hub.listeners(path):
            for key, value in self.children(path):
                self._schedule(subscription, value, key)
                delivered += 1
        return delivered

    def emit(self, path: str, key: str, value: Any) -> None:
        """Deliver a raw event to listeners of ``path`` without storing it."""

        for subscription in self._hub.listeners(path):
            self._schedule(subscription, value, key)

    def subscriber_count(self, path: str) -> int:
        return self._hub.count(path)

    async def idle(self) -> None:
        """Wait until every scheduled delivery has run."""

        while self._pending:
            await asyncio.sleep(0)

    def _schedule(self, subscription: Subscription, value: Any, key: str) -> None:
        loop = asyncio.get_running_loop()
        self._pending += 1
        loop.call_soon(self._deliver, subscription, value, key)

    def _deliver(self, subscription: Subscription, value: Any, key: str) -> None:
        try:
            subscription.deliver(value, key)
        finally:
            self._pending -= 1
