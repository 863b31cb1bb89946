"""Real-time messaging core: presence, social graph, routing and transport."""

from .hub import Subscription, SubscriptionHub
from .models import Snapshot
from .presence import Connection, PresenceRegistry
from .router import ConversationRouter
from .server import main, simulate
from .session_gateway import SessionGateway
from .social import MessagePermission, SocialGraph
from .store import InMemorySnapshotStore, JsonFileSnapshotStore, SnapshotStore

__all__ = [
    "Connection",
    "ConversationRouter",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
    "MessagePermission",
    "PresenceRegistry",
    "SessionGateway",
    "Snapshot",
    "SnapshotStore",
    "SocialGraph",
    "Subscription",
    "SubscriptionHub",
    "main",
    "simulate",
]
