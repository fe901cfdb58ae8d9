"""Room addressing and graph path naming."""

from __future__ import annotations

GLOBAL_ROOM_PATH = "ma-mesh-global-chat-v1"
PRIVATE_CHATS_PATH = "ma-mesh-private-chats"
ROOM_ID_SEPARATOR = "_"


def resolve(pub_a: str, pub_b: str) -> str:
    """Return the room id shared by two identities.

    The pair is sorted before joining, so ``resolve(a, b) == resolve(b, a)``.
    Callers holding no session must skip the call instead of passing an
    empty identity.
    """

    if not pub_a or not pub_b:
        raise ValueError("room identities must be non-empty")
    first, second = sorted((pub_a, pub_b))
    return f"{first}{ROOM_ID_SEPARATOR}{second}"


def is_member(room_id: str, public_key: str) -> bool:
    if not room_id or not public_key:
        return False
    return room_id.startswith(public_key + ROOM_ID_SEPARATOR) or room_id.endswith(ROOM_ID_SEPARATOR + public_key)


def private_room_path(room_id: str, namespace: str = PRIVATE_CHATS_PATH) -> str:
    return f"{namespace}/{room_id}"


def user_path(public_key: str, *parts: str) -> str:
    """Path inside an identity's own space, e.g. ``~PUB/friends``."""

    return "/".join([f"~{public_key}", *parts])


def alias_record_path(alias: str) -> str:
    return f"~@{alias}"
