"""Websocket client for the graph relay, usable as a :class:`GraphStore`."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from aiohttp import WSMsgType

from .streams import EventCallback

log = logging.getLogger(__name__)


def _frame(frame_type: str, body: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"v": 1, "t": frame_type, "body": body}
    if request_id is not None:
        frame["id"] = request_id
    return frame


class _RelaySubscription:
    def __init__(self, graph: "RelayGraph", path: str, callback: EventCallback) -> None:
        self._graph = graph
        self.path = path
        self.callback = callback
        self.active = True

    def deliver(self, value: Any, key: str) -> None:
        if self.active:
            self.callback(value, key)

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._graph._unsubscribe(self)


class RelayGraph:
    """Graph store backed by one of several relays, tried in order.

    Writes are queued and flushed once a connection is up. After every
    (re)connect each live path is subscribed again, and the relay replays
    that path's children, so listeners see duplicates by design.
    """

    def __init__(
        self,
        peers: Sequence[str],
        *,
        reconnect_delay_s: float = 1.0,
        read_timeout_s: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        if not peers:
            raise ValueError("at least one relay peer is required")
        self.peers = list(peers)
        self.reconnect_delay_s = reconnect_delay_s
        self.read_timeout_s = read_timeout_s
        self._http = session
        self._owns_http = session is None
        self._listeners: Dict[str, List[_RelaySubscription]] = {}
        self._reads: Dict[str, Tuple[str, asyncio.Future]] = {}
        self._outbound: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._unsent: List[Dict[str, Any]] = []
        self._connected = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    async def connect(self, timeout: float | None = None) -> None:
        if self._task is None:
            if self._http is None:
                self._http = aiohttp.ClientSession()
            self._closing = False
            self._task = asyncio.create_task(self._run())
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def close(self) -> None:
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        for _, future in list(self._reads.values()):
            if not future.done():
                future.cancel()
        self._reads.clear()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    async def __aenter__(self) -> "RelayGraph":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def flush(self, timeout: float | None = None) -> None:
        """Wait until every queued frame has been written to a relay."""

        await asyncio.wait_for(self._outbound.join(), timeout)

    def subscribe(self, path: str, callback: EventCallback) -> _RelaySubscription:
        subscription = _RelaySubscription(self, path, callback)
        self._listeners.setdefault(path, []).append(subscription)
        self._send_if_connected(_frame("graph.sub", {"path": path}))
        return subscription

    def put(self, path: str, value: Any) -> None:
        self._outbound.put_nowait(_frame("graph.put", {"path": path, "value": value}, secrets.token_hex(8)))

    async def read_once(self, path: str) -> Any:
        request_id = secrets.token_hex(8)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._reads[request_id] = (path, future)
        self._send_if_connected(_frame("graph.get", {"path": path}, request_id))
        try:
            return await asyncio.wait_for(future, self.read_timeout_s)
        finally:
            self._reads.pop(request_id, None)

    def _unsubscribe(self, subscription: _RelaySubscription) -> None:
        listeners = self._listeners.get(subscription.path)
        if not listeners:
            return
        try:
            listeners.remove(subscription)
        except ValueError:
            return
        if not listeners:
            self._listeners.pop(subscription.path, None)
            self._send_if_connected(_frame("graph.unsub", {"path": subscription.path}))

    def _send_if_connected(self, frame: Dict[str, Any]) -> None:
        if self._connected.is_set():
            self._outbound.put_nowait(frame)

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            url = self.peers[attempt % len(self.peers)]
            attempt += 1
            http = self._http
            if http is None:
                return
            try:
                async with http.ws_connect(url) as ws:
                    log.info("connected to relay %s", url)
                    await self._resume(ws)
                    await self._pump(ws)
                log.warning("relay %s closed the connection", url)
            except (aiohttp.ClientError, OSError) as exc:
                log.warning("relay %s unavailable: %s", url, exc)
            finally:
                self._connected.clear()
            if self._closing:
                return
            await asyncio.sleep(self.reconnect_delay_s)

    async def _resume(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._connected.set()
        for path in list(self._listeners):
            await ws.send_json(_frame("graph.sub", {"path": path}))
        for request_id, (path, future) in list(self._reads.items()):
            if not future.done():
                await ws.send_json(_frame("graph.get", {"path": path}, request_id))
        unsent, self._unsent = self._unsent, []
        for frame in unsent:
            await ws.send_json(frame)
            self._outbound.task_done()

    async def _pump(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        writer = asyncio.create_task(self._writer(ws))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        frame = msg.json()
                    except ValueError:
                        log.debug("ignoring malformed relay frame")
                        continue
                    if isinstance(frame, dict):
                        await self._handle_frame(ws, frame)
                elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                    break
        finally:
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

    async def _writer(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            frame = await self._outbound.get()
            try:
                await ws.send_json(frame)
            except (ConnectionResetError, aiohttp.ClientError):
                self._unsent.append(frame)
                return
            except asyncio.CancelledError:
                self._unsent.append(frame)
                raise
            self._outbound.task_done()

    async def _handle_frame(self, ws: aiohttp.ClientWebSocketResponse, frame: Dict[str, Any]) -> None:
        frame_type = frame.get("t")
        body = frame.get("body") or {}
        if not isinstance(body, dict):
            body = {}
        if frame_type == "ping":
            await ws.send_json({"v": 1, "t": "pong", "id": frame.get("id")})
        elif frame_type == "graph.event":
            path = body.get("path")
            key = body.get("key")
            if not isinstance(path, str) or not isinstance(key, str):
                return
            for subscription in list(self._listeners.get(path, [])):
                try:
                    subscription.deliver(body.get("value"), key)
                except Exception:
                    log.warning("listener for %s failed on key %r", path, key, exc_info=True)
        elif frame_type == "graph.value":
            request_id = frame.get("id")
            entry = self._reads.get(request_id) if isinstance(request_id, str) else None
            if entry is not None and not entry[1].done():
                entry[1].set_result(body.get("value"))
        elif frame_type == "error":
            log.warning("relay rejected frame %s: %s", frame.get("id"), body.get("message"))
