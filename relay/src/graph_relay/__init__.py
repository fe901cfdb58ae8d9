"""In-memory graph store and websocket relay used by the mesh chat client."""

from .graph import GraphEvent, MemoryGraph, split_path
from .hub import Subscription, SubscriptionHub
from .server import main, simulate

__all__ = [
    "GraphEvent",
    "MemoryGraph",
    "Subscription",
    "SubscriptionHub",
    "main",
    "simulate",
    "split_path",
]
