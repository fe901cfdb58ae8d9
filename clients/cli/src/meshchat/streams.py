"""Live event feeds over the graph store and the session-owned registry of them."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

log = logging.getLogger(__name__)

EventCallback = Callable[[Any, str], None]


class Cancelable(Protocol):
    def cancel(self) -> None: ...


class GraphStore(Protocol):
    """What the client needs from the replicated graph.

    ``subscribe`` delivers ``(value, key)`` for every child of ``path``,
    at least once and in no particular order; ``None`` values are
    tombstones. ``put`` is fire-and-forget.
    """

    def subscribe(self, path: str, callback: EventCallback) -> Cancelable: ...

    def put(self, path: str, value: Any) -> Any: ...

    async def read_once(self, path: str) -> Any: ...


class StreamHandle:
    """A cancelable feed for one path.

    Events still queued inside the store when :meth:`cancel` runs are
    dropped here, so no callback fires after cancellation.
    """

    def __init__(self, path: str, callback: EventCallback) -> None:
        self.path = path
        self._callback = callback
        self._store_handle: Optional[Cancelable] = None
        self.cancelled = False

    def _attach(self, store_handle: Cancelable) -> None:
        self._store_handle = store_handle
        if self.cancelled:
            store_handle.cancel()

    def _deliver(self, value: Any, key: str) -> None:
        if self.cancelled:
            return
        self._callback(value, key)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._store_handle is not None:
            self._store_handle.cancel()


class EventStreamSubscriber:
    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def subscribe(self, path: str, callback: EventCallback) -> StreamHandle:
        handle = StreamHandle(path, callback)
        handle._attach(self.store.subscribe(path, handle._deliver))
        return handle

    async def read_once(self, path: str) -> Any:
        return await self.store.read_once(path)

    def put(self, path: str, value: Any) -> None:
        self.store.put(path, value)


class SubscriptionRegistry:
    """Open streams for the current session, keyed by what they feed.

    Opening a name that is already open returns the existing handle, which
    is what keeps repeated friend events from stacking subscriptions.
    """

    def __init__(self, subscriber: EventStreamSubscriber) -> None:
        self._subscriber = subscriber
        self._handles: Dict[str, StreamHandle] = {}

    def open(self, name: str, path: str, callback: EventCallback) -> StreamHandle:
        existing = self._handles.get(name)
        if existing is not None:
            return existing
        handle = self._subscriber.subscribe(path, callback)
        self._handles[name] = handle
        log.debug("opened stream %s on %s", name, path)
        return handle

    def is_open(self, name: str) -> bool:
        return name in self._handles

    def names(self) -> List[str]:
        return list(self._handles)

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> int:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.cancel()
        if handles:
            log.debug("cancelled %d streams", len(handles))
        return len(handles)

    def __len__(self) -> int:
        return len(self._handles)
