from __future__ import annotations

from .sessions import DEFAULT_SESSION_TTL_MS, Session, _now_ms, new_token
from .sqlite_backend import SQLiteBackend


class SQLiteSessionStore:
    """Durable session store backed by SQLite."""

    def __init__(self, backend: SQLiteBackend, ttl_ms: int = DEFAULT_SESSION_TTL_MS, *, now_func=_now_ms) -> None:
        self._backend = backend
        self._ttl_ms = ttl_ms
        self._now = now_func

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def create(self, user_id: str) -> Session:
        session = Session(
            user_id=user_id,
            session_token=new_token(),
            expires_at_ms=self._now() + self._ttl_ms,
        )
        with self._backend.lock:
            self._backend.connection.execute(
                "INSERT INTO sessions (session_token, user_id, expires_at_ms) VALUES (?, ?, ?)",
                (session.session_token, session.user_id, session.expires_at_ms),
            )
        return session

    def get(self, session_token: str) -> Session | None:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT session_token, user_id, expires_at_ms FROM sessions WHERE session_token=?",
                (session_token,),
            ).fetchone()
        if row is None:
            return None
        session = Session(session_token=row[0], user_id=row[1], expires_at_ms=row[2])
        if session.expires_at_ms <= self._now():
            self.invalidate(session)
            return None
        return session

    def invalidate(self, session: Session) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                "DELETE FROM sessions WHERE session_token=?",
                (session.session_token,),
            )

    def purge_expired(self) -> int:
        with self._backend.lock:
            cursor = self._backend.connection.execute(
                "DELETE FROM sessions WHERE expires_at_ms <= ?",
                (self._now(),),
            )
            return cursor.rowcount
