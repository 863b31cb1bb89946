from __future__ import annotations

import logging
from typing import Any, Callable

from . import protocol as p
from .hub import Frame
from .presence import Connection, PresenceRegistry
from .router import ConversationRouter
from .social import SocialGraph

logger = logging.getLogger(__name__)


class SessionGateway:
    """Binds live connections to users and tears them down again."""

    def __init__(self, sessions, router: ConversationRouter) -> None:
        self.sessions = sessions
        self.router = router

    @property
    def presence(self) -> PresenceRegistry:
        return self.router.presence

    def resolve(self, token: str | None) -> str | None:
        if not token:
            return None
        session = self.sessions.get(token)
        if session is None:
            return None
        if self.router.store.read().user_by_id(session.user_id) is None:
            return None
        return session.user_id

    def open(self, token: str | None, send: Callable[[Frame], None]) -> Connection | None:
        """Authenticate and subscribe a new connection.

        Returns None when the token does not resolve to a user; the caller is
        expected to drop the transport without sending anything.
        """

        user_id = self.resolve(token)
        if user_id is None:
            logger.info("rejected connection with unknown session")
            return None

        connection = Connection(user_id=user_id, send=send)
        self.presence.register(connection)
        graph = SocialGraph(self.router.store.read(), self.presence)
        self.presence.subscribe(connection, user_id)
        for group in graph.groups_for(user_id):
            self.presence.subscribe(connection, group.id)

        connection.emit(p.INIT_DATA, graph.init_data(user_id))
        for friend_id in graph.reachable_friends(user_id):
            self.presence.broadcast(friend_id, p.REFRESH_DATA)
        logger.info("user %s connected as %s", user_id, connection.conn_id)
        return connection

    def handle(self, connection: Connection, intent: str, body: Any = None, *, request_id: str | None = None) -> bool:
        return self.router.dispatch(connection, intent, body, request_id=request_id)

    def announce(self, user_id: str) -> None:
        """Tell the user and their reachable friends that a profile changed."""

        self.presence.broadcast(user_id, p.REFRESH_DATA)
        self._refresh_friends(user_id)

    def close(self, connection: Connection) -> None:
        went_offline = self.presence.unregister(connection)
        logger.info("user %s disconnected (%s)", connection.user_id, connection.conn_id)
        if went_offline:
            self._refresh_friends(connection.user_id)

    def _refresh_friends(self, user_id: str) -> None:
        graph = SocialGraph(self.router.store.read(), self.presence)
        for friend_id in graph.reachable_friends(user_id):
            self.presence.broadcast(friend_id, p.REFRESH_DATA)
