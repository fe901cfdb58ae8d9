"""Command line client for the mesh chat."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, TextIO

from .auth import AuthSessionManager
from .config import ClientConfig, load_client_config_from_env
from .errors import AuthError, ValidationError
from .identity import GraphIdentityProvider
from .mentions import is_mention
from .reconciler import Message
from .relay_client import RelayGraph
from .store import ChatStore

Handler = Callable[[ChatStore, argparse.Namespace, TextIO], Awaitable[int]]


def format_message(message: Message, alias: str = "") -> str:
    marker = "*" if is_mention(message.text, alias) else " "
    return f"{marker} [{message.timestamp_ms}] {message.author_alias or message.author_public_key[:8]}: {message.text}"


def _read_secret(args: argparse.Namespace) -> str:
    if args.secret is not None:
        return args.secret
    return getpass.getpass("secret: ")


async def handle_register(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    secret = _read_secret(args)
    await chat.register(args.name, secret)
    session = await chat.login(args.name, secret)
    output.write(f"registered {session.identity_handle} {session.public_key}\n")
    return 0


async def handle_login(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    session = await chat.login(args.name, _read_secret(args))
    output.write(f"logged in as {session.identity_handle} {session.public_key}\n")
    return 0


async def handle_logout(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    chat.logout()
    output.write("logged out\n")
    return 0


async def handle_whoami(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    session = chat.session
    if session is None:
        output.write("not logged in\n")
        return 1
    output.write(f"{session.identity_handle} {session.public_key}\n")
    return 0


async def handle_send(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    message_id = await chat.send_global_message(args.text)
    output.write(f"sent {message_id}\n")
    return 0


async def handle_dm(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    message_id = await chat.send_to_friend(args.pub, args.text)
    output.write(f"sent {message_id}\n")
    return 0


async def handle_add_friend(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    chat.add_friend(args.pub, args.alias)
    output.write(f"added {args.alias}\n")
    return 0


async def handle_friends(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    await asyncio.sleep(args.wait)
    for friend in chat.friends():
        output.write(f"{friend.alias}\t{friend.public_key}\n")
    return 0


async def handle_tail(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    session = chat.session
    if session is None:
        raise ValidationError("not logged in")
    if args.pub:
        room = chat.open_room_with(args.pub)
    else:
        room = chat.global_room
    if args.follow:
        def _print(room_id: str, message: Message) -> None:
            if room_id == room.room_id:
                output.write(format_message(message, session.identity_handle) + "\n")
                output.flush()

        handle = chat.on_message(_print)
        try:
            await asyncio.sleep(args.wait)
        finally:
            handle.cancel()
        return 0

    await asyncio.sleep(args.wait)
    for message in reversed(room.messages()):
        output.write(format_message(message, session.identity_handle) + "\n")
    return 0


async def handle_unread(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    await asyncio.sleep(args.wait)
    output.write(f"global\t{chat.unread_count(chat.global_room_id)}\n")
    for friend in chat.friends():
        room = chat.open_room_with(friend.public_key)
        output.write(f"{friend.alias}\t{chat.unread_count(room.room_id)}\n")
    return 0


async def handle_mark_read(chat: ChatStore, args: argparse.Namespace, output: TextIO) -> int:
    await asyncio.sleep(args.wait)
    room_id = chat.open_room_with(args.pub).room_id if args.pub else chat.global_room_id
    mark = chat.mark_read(room_id)
    output.write(f"marked {room_id} read at {mark}\n")
    return 0


HANDLERS: dict[str, Handler] = {
    "register": handle_register,
    "login": handle_login,
    "logout": handle_logout,
    "whoami": handle_whoami,
    "send": handle_send,
    "dm": handle_dm,
    "add-friend": handle_add_friend,
    "friends": handle_friends,
    "tail": handle_tail,
    "unread": handle_unread,
    "mark-read": handle_mark_read,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mesh chat client")
    parser.add_argument("--peer", action="append", default=None, help="Relay URL (repeatable; default from MESHCHAT_PEERS)")
    parser.add_argument("--state-dir", default=None, help="Directory holding the stored session")
    parser.add_argument("--connect-timeout", type=float, default=10.0, help="Seconds to wait for a relay")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("register", "Create an identity and log in"), ("login", "Log in and store the session")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("name", help="Alias")
        sub.add_argument("--secret", default=None, help="Secret (prompted when omitted)")

    subparsers.add_parser("logout", help="Forget the stored session")
    subparsers.add_parser("whoami", help="Show the stored identity")

    send = subparsers.add_parser("send", help="Send to the global room")
    send.add_argument("text")

    dm = subparsers.add_parser("dm", help="Send a private message to a node")
    dm.add_argument("pub", help="Recipient public key")
    dm.add_argument("text")

    add_friend = subparsers.add_parser("add-friend", help="Add a node to your friend list")
    add_friend.add_argument("pub", help="Friend public key")
    add_friend.add_argument("alias", help="Friend alias")

    friends = subparsers.add_parser("friends", help="List friends")
    friends.add_argument("--wait", type=float, default=1.0, help="Seconds to collect events (default: 1.0)")

    tail = subparsers.add_parser("tail", help="Print a room's messages")
    tail.add_argument("--pub", default=None, help="Peer public key for a private room (default: global room)")
    tail.add_argument("--wait", type=float, default=1.0, help="Seconds to collect events (default: 1.0)")
    tail.add_argument("--follow", action="store_true", help="Print messages as they arrive until --wait elapses")

    unread = subparsers.add_parser("unread", help="Show unread counts")
    unread.add_argument("--wait", type=float, default=1.0, help="Seconds to collect events (default: 1.0)")

    mark_read = subparsers.add_parser("mark-read", help="Mark a room read up to its newest message")
    mark_read.add_argument("--pub", default=None, help="Peer public key for a private room (default: global room)")
    mark_read.add_argument("--wait", type=float, default=1.0, help="Seconds to collect events (default: 1.0)")
    return parser


def _resolve_config(args: argparse.Namespace) -> ClientConfig:
    config = load_client_config_from_env()
    if args.peer:
        config = replace(config, peers=tuple(args.peer))
    if args.state_dir:
        config = replace(config, state_dir=Path(args.state_dir).expanduser())
    return config


async def run(args: argparse.Namespace, output: TextIO) -> int:
    config = _resolve_config(args)
    graph = RelayGraph(config.peers, reconnect_delay_s=config.reconnect_delay_s, read_timeout_s=config.read_timeout_s)
    try:
        try:
            await graph.connect(timeout=args.connect_timeout)
        except asyncio.TimeoutError:
            output.write("error: no relay reachable\n")
            return 2
        auth = AuthSessionManager(GraphIdentityProvider(graph), session_path=config.session_path)
        auth.restore()
        chat = ChatStore(graph, auth, config=config)
        chat.start()
        try:
            return await HANDLERS[args.command](chat, args, output)
        except AuthError as exc:
            output.write(f"error: {exc.reason}\n")
            return 1
        except ValidationError as exc:
            output.write(f"error: {exc}\n")
            return 1
        finally:
            chat.close()
            try:
                await graph.flush(timeout=args.connect_timeout)
            except asyncio.TimeoutError:
                output.write("warning: some writes were not delivered\n")
    finally:
        await graph.close()


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args, output or sys.stdout))


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
