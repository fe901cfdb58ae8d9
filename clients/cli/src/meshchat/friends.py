from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ValidationError
from .rooms import resolve, user_path
from .streams import EventStreamSubscriber

log = logging.getLogger(__name__)

FRIEND_STATUS = "friend"
PENDING_STATUS = "pending"


@dataclass(frozen=True)
class Friend:
    public_key: str
    alias: str
    status: str = FRIEND_STATUS
    online: Optional[bool] = None


def friend_record(public_key: str, alias: str) -> Dict[str, str]:
    return {"pub": public_key, "alias": alias, "status": FRIEND_STATUS}


def friends_path(self_public_key: str) -> str:
    return user_path(self_public_key, "friends")


class FriendRegistry:
    """Friend roster built from the current user's friend stream.

    Each newly seen public key is registered once and its private room is
    opened once through ``open_room``; repeats of a known key change nothing.
    Adding a friend is one-directional: it only writes to the caller's own
    friend list, and the peer has to add the caller back.
    """

    def __init__(
        self,
        self_public_key: str,
        subscriber: EventStreamSubscriber,
        open_room: Callable[[str], Any],
    ) -> None:
        if not self_public_key:
            raise ValueError("self_public_key is required")
        self.self_public_key = self_public_key
        self._subscriber = subscriber
        self._open_room = open_room
        self._friends: Dict[str, Friend] = {}
        self._room_ids: Dict[str, str] = {}

    @property
    def path(self) -> str:
        return friends_path(self.self_public_key)

    def on_friend_event(self, value: Any, key: str) -> bool:
        if not isinstance(value, dict) or value.get("status") != FRIEND_STATUS or not key:
            return False
        if key in self._friends:
            return False
        friend = Friend(public_key=key, alias=str(value.get("alias") or ""), status=FRIEND_STATUS)
        self._friends[key] = friend
        room_id = resolve(self.self_public_key, key)
        self._room_ids[key] = room_id
        log.debug("friend %s discovered, opening room %s", key, room_id)
        self._open_room(room_id)
        return True

    def add_friend(self, public_key: str, alias: str) -> None:
        public_key = (public_key or "").strip()
        alias = (alias or "").strip()
        if not public_key:
            raise ValidationError("friend public key is required")
        if not alias:
            raise ValidationError("friend alias is required")
        if "/" in public_key:
            raise ValidationError("friend public key must not contain '/'")
        self._subscriber.put(f"{self.path}/{public_key}", friend_record(public_key, alias))

    def friends(self) -> Tuple[Friend, ...]:
        return tuple(self._friends.values())

    def get(self, public_key: str) -> Optional[Friend]:
        return self._friends.get(public_key)

    def room_id_for(self, public_key: str) -> Optional[str]:
        return self._room_ids.get(public_key)

    def __contains__(self, public_key: object) -> bool:
        return public_key in self._friends

    def __len__(self) -> int:
        return len(self._friends)
