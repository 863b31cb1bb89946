from __future__ import annotations

from typing import Any

from parley.auth import AuthService
from parley.presence import Connection, PresenceRegistry
from parley.router import ConversationRouter
from parley.session_gateway import SessionGateway
from parley.sessions import SessionStore
from parley.store import InMemorySnapshotStore, SnapshotStore

FAST_HASH_ITERATIONS = 1_000


class FakeClock:
    def __init__(self, start_ms: int = 1_000) -> None:
        self.now_ms = start_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def now(self) -> int:
        return self.now_ms


class Client:
    """Records every frame delivered to one simulated connection."""

    def __init__(self, core: "Core", username: str, token: str) -> None:
        self.core = core
        self.username = username
        self.token = token
        self.frames: list[dict[str, Any]] = []
        self.connection: Connection | None = None

    @property
    def user_id(self) -> str:
        return self.core.user_ids[self.username]

    def deliver(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    def connect(self) -> "Client":
        self.connection = self.core.gateway.open(self.token, self.deliver)
        return self

    def disconnect(self) -> None:
        if self.connection is not None:
            self.core.gateway.close(self.connection)
            self.connection = None

    def send(self, intent: str, body: Any = None) -> bool:
        assert self.connection is not None, f"{self.username} is not connected"
        return self.core.gateway.handle(self.connection, intent, body)

    def bodies(self, event: str) -> list[Any]:
        return [frame.get("body") for frame in self.frames if frame["t"] == event]

    def count(self, event: str) -> int:
        return len(self.bodies(event))

    def last(self, event: str) -> Any:
        bodies = self.bodies(event)
        if not bodies:
            raise AssertionError(f"{self.username} received no {event!r}; got {[f['t'] for f in self.frames]}")
        return bodies[-1]

    def clear(self) -> None:
        self.frames.clear()

    def init_data(self) -> dict[str, Any]:
        self.send("refresh_data")
        return self.last("init_data")


class Core:
    def __init__(self, store: SnapshotStore | None = None, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.store = store or InMemorySnapshotStore()
        self.sessions = SessionStore()
        self.presence = PresenceRegistry()
        self.router = ConversationRouter(self.store, self.presence, now_func=self.clock.now)
        self.gateway = SessionGateway(self.sessions, self.router)
        self.auth = AuthService(self.store, self.sessions, iterations=FAST_HASH_ITERATIONS)
        self.user_ids: dict[str, str] = {}

    def register(self, username: str, password: str = "pw") -> Client:
        user, session = self.auth.register(username, password)
        self.user_ids[username] = user.id
        return Client(self, username, session.session_token)

    def online(self, *usernames: str) -> list[Client]:
        return [self.register(name).connect() for name in usernames]

    def befriend(self, a: Client, b: Client) -> None:
        a.send("friend_request", {"username": b.username})
        b.send("friend_request", {"username": a.username})
