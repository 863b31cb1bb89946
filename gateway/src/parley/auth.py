from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Any

from .errors import AuthenticationRequired, Conflict, NotFound, ValidationFailure
from .models import DEFAULT_AVATAR_TEMPLATE, User, generated_avatar
from .router import new_id
from .sessions import Session
from .store import SnapshotStore

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000
SEARCH_MIN_CHARS = 2
SEARCH_LIMIT = 10
MAX_USERNAME_LENGTH = 32


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return hmac.compare_digest(digest.hex(), expected)


def _clean_username(username: Any) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationFailure("Username and password are required.")
    username = username.strip()
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValidationFailure(f"Username must be at most {MAX_USERNAME_LENGTH} characters.")
    return username


class AuthService:
    """Registration, login and profile updates on top of the snapshot store."""

    def __init__(
        self,
        store: SnapshotStore,
        sessions,
        *,
        avatar_template: str = DEFAULT_AVATAR_TEMPLATE,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self._avatar_template = avatar_template
        self._iterations = iterations

    def register(self, username: Any, password: Any) -> tuple[User, Session]:
        username = _clean_username(username)
        if not isinstance(password, str) or not password:
            raise ValidationFailure("Username and password are required.")
        with self.store.transaction() as snapshot:
            if snapshot.user_by_name(username) is not None:
                raise Conflict("User already exists.")
            user = User(
                id=new_id("u"),
                username=username,
                password_hash=hash_password(password, iterations=self._iterations),
                avatar=generated_avatar(username, self._avatar_template),
            )
            snapshot.users.append(user)
        logger.info("registered user %s (%s)", user.username, user.id)
        return user, self.sessions.create(user.id)

    def login(self, username: Any, password: Any) -> tuple[User, Session]:
        if not isinstance(username, str) or not isinstance(password, str) or not username.strip() or not password:
            raise ValidationFailure("Username or password missing.")
        user = self.store.read().user_by_name(username.strip())
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationRequired("Invalid username or password.")
        return user, self.sessions.create(user.id)

    def logout(self, token: str | None) -> None:
        if not token:
            return
        session = self.sessions.get(token)
        if session is not None:
            self.sessions.invalidate(session)

    def current_user(self, token: str | None) -> User:
        session = self.sessions.get(token) if token else None
        if session is None:
            raise AuthenticationRequired("Unauthorized: Session required.")
        user = self.store.read().user_by_id(session.user_id)
        if user is None:
            self.sessions.invalidate(session)
            raise AuthenticationRequired("Unauthorized: Invalid session.")
        return user

    def search_users(self, user: User, query: Any) -> list[dict[str, Any]]:
        if not isinstance(query, str) or len(query) < SEARCH_MIN_CHARS:
            return []
        prefix = query.casefold()
        results = [
            candidate.to_public()
            for candidate in self.store.read().users
            if candidate.id != user.id and candidate.username.casefold().startswith(prefix)
        ]
        return results[:SEARCH_LIMIT]

    def update_avatar(self, user: User, avatar_url: Any) -> User:
        if not isinstance(avatar_url, str) or not avatar_url.strip():
            raise ValidationFailure("New avatar URL is required.")
        with self.store.transaction() as snapshot:
            stored = snapshot.user_by_id(user.id)
            if stored is None:
                raise NotFound("User not found.")
            stored.avatar = avatar_url.strip()
        return stored

    def update_username(self, user: User, username: Any) -> User:
        """Rename a user; group member name snapshots are left as they were."""

        username = _clean_username(username)
        with self.store.transaction() as snapshot:
            stored = snapshot.user_by_id(user.id)
            if stored is None:
                raise NotFound("User not found.")
            clash = snapshot.user_by_name(username)
            if clash is not None and clash.id != user.id:
                raise Conflict("Username is already taken.")
            stored.username = username
        return stored
