"""Aggregate chat state: session, rooms, friends, read marks, and commands."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .auth import AuthSessionManager, Session, SessionChangeEvent, SessionObservation
from .config import ClientConfig
from .errors import ValidationError
from .friends import Friend, FriendRegistry
from .mentions import is_mention
from .reconciler import Message, MessageReconciler, message_payload, new_message_id
from .rooms import is_member, private_room_path, resolve, user_path
from .streams import EventStreamSubscriber, GraphStore, SubscriptionRegistry

log = logging.getLogger(__name__)

GLOBAL_STREAM = "global"
FRIENDS_STREAM = "friends"
READ_STATE_STREAM = "read_state"


def _now_ms() -> int:
    return int(time.time() * 1000)


class Notifier(Protocol):
    def notify(self, room_id: str, message: Message) -> None: ...

    def close(self) -> None: ...


class LoggingNotifier:
    """Default mention notifier; one instance lives for one session."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.closed = False

    def notify(self, room_id: str, message: Message) -> None:
        if not self.closed:
            log.info("mention for %s in %s from %s", self.session.identity_handle, room_id, message.author_alias)

    def close(self) -> None:
        self.closed = True


MessageListener = Callable[[str, Message], None]


class _ListenerHandle:
    def __init__(self, listeners: List["_ListenerHandle"], callback: MessageListener) -> None:
        self._listeners = listeners
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._listeners.remove(self)


class ChatStore:
    """Single point of truth for the presentation layer.

    Every stream callback mutates exactly one slice (one room's reconciler,
    the friend registry, or the read marks) and runs to completion on the
    event loop, so a query made after an event was processed sees all of it.
    Streams are owned by the current session: a session change cancels all
    of them and rebuilds state from empty.
    """

    def __init__(
        self,
        store: GraphStore,
        auth: AuthSessionManager,
        *,
        config: ClientConfig | None = None,
        notifier_factory: Callable[[Session], Notifier] = LoggingNotifier,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config or ClientConfig()
        self.auth = auth
        self.subscriber = EventStreamSubscriber(store)
        self._notifier_factory = notifier_factory
        self._clock = clock
        self._subscriptions = SubscriptionRegistry(self.subscriber)
        self._observation: Optional[SessionObservation] = None
        self._listeners: List[_ListenerHandle] = []

        self._session: Optional[Session] = None
        self._session_started_ms = 0
        self._notifier: Optional[Notifier] = None
        self._friends: Optional[FriendRegistry] = None
        self._rooms: Dict[str, MessageReconciler] = {}
        self._read_marks: Dict[str, int] = {}
        self.global_room = MessageReconciler(self.global_room_id)

    @property
    def global_room_id(self) -> str:
        return self.config.global_room_path

    # lifecycle

    def start(self) -> None:
        if self._observation is None:
            self._observation = self.auth.observe_session(self._on_session_change)
        if self.auth.session is not None and self._session is not self.auth.session:
            self._open_session(self.auth.session)

    def close(self) -> None:
        if self._observation is not None:
            self._observation.cancel()
            self._observation = None
        self._close_session()

    def _on_session_change(self, event: SessionChangeEvent) -> None:
        if event.authenticated and event.session is not None:
            self._open_session(event.session)
        else:
            self._close_session()

    def _open_session(self, session: Session) -> None:
        self._close_session()
        self._session = session
        self._session_started_ms = self._clock()
        self._notifier = self._notifier_factory(session)
        self.global_room = MessageReconciler(self.global_room_id, on_insert=self._insert_hook(self.global_room_id))
        self._friends = FriendRegistry(session.public_key, self.subscriber, open_room=self._open_private_room)

        self._subscriptions.open(GLOBAL_STREAM, self.global_room_id, self.global_room.on_event)
        self._subscriptions.open(FRIENDS_STREAM, self._friends.path, self._friends.on_friend_event)
        self._subscriptions.open(
            READ_STATE_STREAM, user_path(session.public_key, "readState"), self._on_read_state
        )
        log.info("session streams opened for %s", session.identity_handle)

    def _close_session(self) -> None:
        self._subscriptions.cancel_all()
        if self._notifier is not None:
            self._notifier.close()
            self._notifier = None
        if self._session is not None:
            log.info("session streams closed for %s", self._session.identity_handle)
        self._session = None
        self._friends = None
        self._rooms = {}
        self._read_marks = {}
        self.global_room = MessageReconciler(self.global_room_id)

    # queries

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def friends(self) -> Tuple[Friend, ...]:
        if self._friends is None:
            return ()
        return self._friends.friends()

    def friend(self, public_key: str) -> Optional[Friend]:
        if self._friends is None:
            return None
        return self._friends.get(public_key)

    def room(self, room_id: str) -> MessageReconciler:
        """Return a room's reconciler, materialising and subscribing it on first use."""

        if room_id == self.global_room_id:
            return self.global_room
        if not room_id:
            raise ValidationError("room id is required")
        return self._open_private_room(room_id)

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def open_room_with(self, public_key: str) -> MessageReconciler:
        session = self._require_session()
        if not public_key:
            raise ValidationError("public key is required")
        return self._open_private_room(resolve(session.public_key, public_key))

    def subscription_names(self) -> List[str]:
        return self._subscriptions.names()

    def _known_room(self, room_id: str) -> Optional[MessageReconciler]:
        if room_id == self.global_room_id:
            return self.global_room
        return self._rooms.get(room_id)

    def last_read(self, room_id: str) -> int:
        return self._read_marks.get(room_id, 0)

    def unread_count(self, room_id: str) -> int:
        session = self._session
        room = self._known_room(room_id)
        if session is None or room is None:
            return 0
        return sum(
            1
            for message in room.newer_than(self.last_read(room_id))
            if message.author_public_key != session.public_key
        )

    def mentions(self, room_id: str) -> List[Message]:
        session = self._session
        room = self._known_room(room_id)
        if session is None or room is None:
            return []
        return [message for message in room.messages() if is_mention(message.text, session.identity_handle)]

    def on_message(self, callback: MessageListener) -> _ListenerHandle:
        """Call ``callback(room_id, message)`` for every newly stored message."""

        handle = _ListenerHandle(self._listeners, callback)
        self._listeners.append(handle)
        return handle

    # commands

    async def register(self, name: str, secret: str) -> None:
        await self.auth.register(name, secret)

    async def login(self, name: str, secret: str) -> Session:
        return await self.auth.login(name, secret)

    def logout(self) -> None:
        self.auth.logout()

    async def send_global_message(self, text: str) -> str:
        return await self._send(self.global_room_id, self.global_room_id, text)

    async def send_private_message(self, room_id: str, text: str) -> str:
        session = self._require_session()
        if not is_member(room_id, session.public_key):
            raise ValidationError("not a member of this room")
        self._open_private_room(room_id)
        return await self._send(room_id, private_room_path(room_id, self.config.private_namespace), text)

    async def send_to_friend(self, public_key: str, text: str) -> str:
        session = self._require_session()
        if not public_key:
            raise ValidationError("friend public key is required")
        return await self.send_private_message(resolve(session.public_key, public_key), text)

    def add_friend(self, public_key: str, alias: str) -> None:
        self._require_session()
        if self._friends is None:
            raise ValidationError("not logged in")
        self._friends.add_friend(public_key, alias)

    def mark_read(self, room_id: str) -> int:
        session = self._require_session()
        latest = self.room(room_id).latest()
        mark = latest.timestamp_ms if latest is not None else self._clock()
        self.subscriber.put(user_path(session.public_key, "readState", room_id), mark)
        return mark

    # internals

    def _require_session(self) -> Session:
        if self._session is None:
            raise ValidationError("not logged in")
        return self._session

    async def _send(self, room_id: str, path: str, text: str) -> str:
        session = self._require_session()
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("message text is required")
        try:
            alias = await self.subscriber.read_once(user_path(session.public_key, "alias"))
        except asyncio.TimeoutError:
            alias = None
        if self._session is not session:
            raise ValidationError("session ended before the message was sent")
        if not isinstance(alias, str) or not alias:
            alias = session.identity_handle
        message_id = new_message_id()
        self.subscriber.put(f"{path}/{message_id}", message_payload(text, alias, session.public_key, self._clock()))
        log.debug("sent %s to %s", message_id, room_id)
        return message_id

    def _open_private_room(self, room_id: str) -> MessageReconciler:
        reconciler = self._rooms.get(room_id)
        if reconciler is None:
            reconciler = MessageReconciler(room_id, on_insert=self._insert_hook(room_id))
            self._rooms[room_id] = reconciler
        if self._session is not None:
            self._subscriptions.open(
                f"room:{room_id}",
                private_room_path(room_id, self.config.private_namespace),
                reconciler.on_event,
            )
        return reconciler

    def _insert_hook(self, room_id: str) -> Callable[[Message], None]:
        def _on_insert(message: Message) -> None:
            session = self._session
            if (
                session is not None
                and self._notifier is not None
                and message.author_public_key != session.public_key
                and message.timestamp_ms >= self._session_started_ms
                and is_mention(message.text, session.identity_handle)
            ):
                self._notifier.notify(room_id, message)
            for listener in list(self._listeners):
                if not listener.cancelled:
                    listener.callback(room_id, message)

        return _on_insert

    def _on_read_state(self, value: Any, key: str) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or not key:
            return
        self._read_marks[key] = max(self._read_marks.get(key, 0), int(value))
