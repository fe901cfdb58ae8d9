from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from aiohttp import WSMsgType, web

from .graph import MemoryGraph, split_path
from .hub import Subscription

log = logging.getLogger(__name__)

RELAY_PATH = "/gun"


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def create_app(
    *,
    graph: MemoryGraph | None = None,
    ping_interval_s: int = 30,
    ping_miss_limit: int = 2,
    max_msg_size: int = 1_048_576,
) -> web.Application:
    app = web.Application()
    app["graph"] = graph or MemoryGraph()
    app["ws_config"] = {
        "ping_interval_s": ping_interval_s,
        "ping_miss_limit": ping_miss_limit,
        "max_msg_size": max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_get(RELAY_PATH, websocket_handler)
    return app


def _error_frame(code: str, message: str, *, request_id: str | None = None) -> dict[str, Any]:
    return {"v": 1, "t": "error", "id": request_id, "body": {"code": code, "message": message}}


def _event_frame(path: str, key: str, value: Any) -> dict[str, Any]:
    return {"v": 1, "t": "graph.event", "body": {"path": path, "key": key, "value": value}}


def _valid_path(path: Any, *, allow_root: bool = False) -> bool:
    if allow_root and path == "":
        return True
    try:
        split_path(path)
    except ValueError:
        return False
    return True


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    graph: MemoryGraph = request.app["graph"]
    ws_config: dict[str, Any] = request.app["ws_config"]

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    last_activity = asyncio.get_event_loop().time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=10_000)
    subscriptions: Dict[str, Subscription] = {}
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = asyncio.get_event_loop().time()
        missed_heartbeats = 0

    def enqueue(frame: dict) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            asyncio.create_task(close_with_error("backpressure"))

    def listener_for(path: str):
        def _listener(value: Any, key: str) -> None:
            enqueue(_event_frame(path, key, value))

        return _listener

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                now = asyncio.get_event_loop().time()
                if now - last_activity >= ws_config["ping_interval_s"]:
                    await ws.send_json({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())
    log.info("relay peer connected from %s", request.remote)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    enqueue(_error_frame("invalid_request", "malformed json"))
                    continue
                if not isinstance(frame, dict):
                    enqueue(_error_frame("invalid_request", "frame must be an object"))
                    continue

                mark_activity()
                request_id = frame.get("id")
                if frame.get("v") != 1:
                    enqueue(_error_frame("invalid_request", "unsupported version", request_id=request_id))
                    continue

                frame_type = frame.get("t")
                body = frame.get("body") or {}
                path = body.get("path") if isinstance(body, dict) else None

                if frame_type == "ping":
                    enqueue({"v": 1, "t": "pong", "id": request_id})
                elif frame_type == "pong":
                    continue
                elif frame_type == "graph.sub":
                    if not _valid_path(path, allow_root=True):
                        enqueue(_error_frame("invalid_request", "path required", request_id=request_id))
                        continue
                    previous = subscriptions.pop(path, None)
                    if previous is not None:
                        previous.cancel()
                    enqueue({"v": 1, "t": "graph.subscribed", "id": request_id, "body": {"path": path}})
                    subscriptions[path] = graph.subscribe(path, listener_for(path))
                elif frame_type == "graph.unsub":
                    subscription = subscriptions.pop(path, None) if isinstance(path, str) else None
                    if subscription is not None:
                        subscription.cancel()
                elif frame_type == "graph.put":
                    if not _valid_path(path) or "value" not in body:
                        enqueue(_error_frame("invalid_request", "path and value required", request_id=request_id))
                        continue
                    graph.put(path, body["value"])
                    enqueue({"v": 1, "t": "graph.acked", "id": request_id, "body": {"path": path}})
                elif frame_type == "graph.get":
                    if not _valid_path(path):
                        enqueue(_error_frame("invalid_request", "path required", request_id=request_id))
                        continue
                    enqueue({"v": 1, "t": "graph.value", "id": request_id, "body": {"path": path, "value": graph.get(path)}})
                else:
                    enqueue(_error_frame("invalid_request", "unknown frame type", request_id=request_id))
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        heartbeat_task.cancel()
        for subscription in subscriptions.values():
            subscription.cancel()
        subscriptions.clear()
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)
        log.info("relay peer disconnected from %s", request.remote)

    return ws
