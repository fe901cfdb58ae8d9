"""Mesh chat client: reconciles graph event streams into chat state."""

from .auth import AuthSessionManager, Identity, Session, SessionChangeEvent
from .errors import AuthError, MeshChatError, ValidationError
from .friends import Friend, FriendRegistry
from .mentions import is_mention
from .reconciler import Message, MessageReconciler
from .rooms import resolve
from .store import ChatStore
from .streams import EventStreamSubscriber, SubscriptionRegistry

__all__ = [
    "AuthError",
    "AuthSessionManager",
    "ChatStore",
    "EventStreamSubscriber",
    "Friend",
    "FriendRegistry",
    "Identity",
    "MeshChatError",
    "Message",
    "MessageReconciler",
    "Session",
    "SessionChangeEvent",
    "SubscriptionRegistry",
    "ValidationError",
    "is_mention",
    "resolve",
]
