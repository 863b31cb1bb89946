from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from .hub import Frame, Subscription, SubscriptionHub
from .protocol import frame

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """A live client connection bound to one user."""

    user_id: str
    send: Callable[[Frame], None]
    conn_id: str = field(default_factory=lambda: f"c_{secrets.token_urlsafe(8)}")
    subscriptions: List[Subscription] = field(default_factory=list)

    @property
    def channels(self) -> set[str]:
        return {subscription.channel_id for subscription in self.subscriptions}

    def emit(self, event: str, body: Any = None, *, request_id: str | None = None) -> None:
        self.send(frame(event, body, request_id=request_id))


class PresenceRegistry:
    """Maps each user to at most one live connection and owns channel fan-out.

    A second ``register`` for the same user replaces the first entry. The
    replaced connection keeps its channel subscriptions until it closes, but
    only the newest one is reported by :meth:`connection_for`.
    """

    def __init__(self, hub: SubscriptionHub | None = None) -> None:
        self.hub = hub or SubscriptionHub()
        self._online: Dict[str, Connection] = {}

    def register(self, connection: Connection) -> Connection | None:
        previous = self._online.get(connection.user_id)
        self._online[connection.user_id] = connection
        if previous is not None and previous is not connection:
            logger.info("user %s replaced connection %s with %s", connection.user_id, previous.conn_id, connection.conn_id)
        return previous

    def unregister(self, connection: Connection) -> bool:
        """Drop ``connection``; returns True when its user is now offline."""

        for subscription in connection.subscriptions:
            self.hub.unsubscribe(subscription)
        connection.subscriptions.clear()
        if self._online.get(connection.user_id) is connection:
            self._online.pop(connection.user_id, None)
            return True
        return False

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def connection_for(self, user_id: str) -> Connection | None:
        return self._online.get(user_id)

    def online_users(self) -> set[str]:
        return set(self._online)

    def subscribe(self, connection: Connection, channel_id: str) -> bool:
        if channel_id in connection.channels:
            return False
        subscription = self.hub.subscribe(connection.conn_id, channel_id, connection.send)
        connection.subscriptions.append(subscription)
        return True

    def join(self, user_id: str, channel_id: str) -> bool:
        """Subscribe the user's live connection, if any, to ``channel_id``."""

        connection = self._online.get(user_id)
        if connection is None:
            return False
        return self.subscribe(connection, channel_id)

    def channels_for(self, user_id: str) -> set[str]:
        connection = self._online.get(user_id)
        if connection is None:
            return set()
        return connection.channels

    def broadcast(self, channel_id: str, event: str, body: Any = None) -> int:
        """Deliver one event to every subscriber; offline channels are a no-op."""

        return self.hub.broadcast(channel_id, frame(event, body))
