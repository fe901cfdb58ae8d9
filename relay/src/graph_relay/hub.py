from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

Callback = Callable[[Any, str], None]


@dataclass(eq=False)
class Subscription:
    path: str
    callback: Callback
    hub: "SubscriptionHub" = field(repr=False)
    active: bool = True

    def deliver(self, value: Any, key: str) -> None:
        if self.active:
            self.callback(value, key)

    def cancel(self) -> None:
        """Stop delivery; safe to call more than once."""

        if not self.active:
            return
        self.active = False
        self.hub.unsubscribe(self)


class SubscriptionHub:
    """Registers path subscriptions and fans child events out to listeners."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, path: str, callback: Callback) -> Subscription:
        subscription = Subscription(path=path, callback=callback, hub=self)
        self._subscriptions.setdefault(path, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.path)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.path, None)

    def listeners(self, path: str) -> List[Subscription]:
        return list(self._subscriptions.get(path, []))

    def count(self, path: str) -> int:
        return len(self._subscriptions.get(path, []))
