"""Development relay for the mesh chat graph, with a frame simulation CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Callable, Iterable, TextIO

from aiohttp import web

from .config import load_relay_config_from_env
from .graph import MemoryGraph
from .ws_transport import create_app


async def simulate(frames: Iterable[dict], output: TextIO) -> MemoryGraph:
    """Process JSON frames through an in-memory graph and emit delivered events."""

    graph = MemoryGraph()
    listeners: dict[tuple[str, str], Any] = {}

    def listener_for(conn: str, path: str) -> Callable[[Any, str], None]:
        def _listener(value: Any, key: str) -> None:
            message = {"t": "graph.event", "conn": conn, "path": path, "key": key, "value": value}
            output.write(json.dumps(message, sort_keys=True) + "\n")

        return _listener

    for frame in frames:
        frame_type = frame.get("t")
        if frame_type == "graph.sub":
            conn = frame.get("conn", "c1")
            path = frame["path"]
            previous = listeners.pop((conn, path), None)
            if previous is not None:
                previous.cancel()
            listeners[(conn, path)] = graph.subscribe(path, listener_for(conn, path))
        elif frame_type == "graph.unsub":
            subscription = listeners.pop((frame.get("conn", "c1"), frame["path"]), None)
            if subscription is not None:
                subscription.cancel()
        elif frame_type == "graph.put":
            graph.put(frame["path"], frame.get("value"))
        elif frame_type == "graph.replay":
            graph.replay(frame["path"])
        else:
            raise ValueError(f"unsupported frame type: {frame_type}")
        await graph.idle()
    return graph


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    asyncio.run(simulate(frames, output))
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = load_relay_config_from_env()
    app = create_app(
        ping_interval_s=args.ping_interval,
        ping_miss_limit=config.ping_miss_limit,
        max_msg_size=config.max_msg_size,
    )
    web.run_app(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    config = load_relay_config_from_env()
    parser = argparse.ArgumentParser(description="Mesh chat graph relay")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Simulate relay frames against an in-memory graph")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp relay server")
    serve_parser.add_argument("--host", default=config.host, help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=config.port, help="Port to bind")
    serve_parser.add_argument(
        "--ping-interval",
        type=int,
        default=config.ping_interval_s,
        help="Seconds between heartbeat pings",
    )
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for relay commands."""

    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
