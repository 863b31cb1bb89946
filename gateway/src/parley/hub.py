from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

Frame = Dict[str, Any]
Callback = Callable[[Frame], None]


@dataclass(eq=False)
class Subscription:
    conn_id: str
    channel_id: str
    callback: Callback

    def deliver(self, frame: Frame) -> None:
        self.callback(frame)


class SubscriptionHub:
    """Registers channel subscriptions and fans frames out to every listener."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, conn_id: str, channel_id: str, callback: Callback) -> Subscription:
        subscription = Subscription(conn_id=conn_id, channel_id=channel_id, callback=callback)
        self._subscriptions.setdefault(channel_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.channel_id)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.channel_id, None)

    def broadcast(self, channel_id: str, frame: Frame) -> int:
        """Deliver ``frame`` to the channel; returns how many listeners got it."""

        subs = list(self._subscriptions.get(channel_id, []))
        for subscription in subs:
            subscription.deliver(frame)
        return len(subs)

    def listeners(self, channel_id: str) -> int:
        return len(self._subscriptions.get(channel_id, []))
