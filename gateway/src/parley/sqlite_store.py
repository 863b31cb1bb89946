from __future__ import annotations

from .models import Friendship, Group, GroupMember, Message, Snapshot, User
from .sqlite_backend import SQLiteBackend
from .store import SnapshotStore


class SQLiteSnapshotStore(SnapshotStore):
    """Durable snapshot store; every save rewrites all tables in one transaction."""

    def __init__(self, backend: SQLiteBackend) -> None:
        super().__init__()
        self._backend = backend

    def close(self) -> None:
        self._backend.close()

    def load(self) -> Snapshot:
        with self._backend.lock:
            conn = self._backend.connection
            users = [
                User(id=row["id"], username=row["username"], password_hash=row["password_hash"], avatar=row["avatar"])
                for row in conn.execute(
                    "SELECT id, username, password_hash, avatar FROM users ORDER BY position"
                ).fetchall()
            ]
            friendships = [
                Friendship(
                    id=row["id"],
                    from_user=row["from_user"],
                    to_user=row["to_user"],
                    status=row["status"],
                    blocker_id=row["blocker_id"],
                )
                for row in conn.execute(
                    "SELECT id, from_user, to_user, status, blocker_id FROM friendships ORDER BY position"
                ).fetchall()
            ]
            groups = []
            for row in conn.execute(
                "SELECT id, name, avatar, creator_id FROM chat_groups ORDER BY position"
            ).fetchall():
                members = [
                    GroupMember(id=m["user_id"], name=m["name"])
                    for m in conn.execute(
                        "SELECT user_id, name FROM group_members WHERE group_id=? ORDER BY position",
                        (row["id"],),
                    ).fetchall()
                ]
                admins = [
                    a["user_id"]
                    for a in conn.execute(
                        "SELECT user_id FROM group_admins WHERE group_id=? ORDER BY position",
                        (row["id"],),
                    ).fetchall()
                ]
                groups.append(
                    Group(
                        id=row["id"],
                        name=row["name"],
                        avatar=row["avatar"],
                        creator_id=row["creator_id"],
                        members=members,
                        admins=admins,
                    )
                )
            messages = [
                Message(
                    id=row["id"],
                    sender=row["sender"],
                    target=row["target"],
                    is_group=bool(row["is_group"]),
                    content=row["content"],
                    type=row["type"],
                    timestamp=row["ts_ms"],
                    sender_name=row["sender_name"],
                    file_name=row["file_name"],
                )
                for row in conn.execute(
                    """
                    SELECT id, sender, target, is_group, content, type, ts_ms, sender_name, file_name
                    FROM messages
                    ORDER BY position
                    """
                ).fetchall()
            ]
        return Snapshot(users=users, messages=messages, friendships=friendships, groups=groups)

    def save(self, snapshot: Snapshot) -> None:
        with self._backend.lock:
            conn = self._backend.connection
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                for table in ("group_admins", "group_members", "chat_groups", "messages", "friendships", "users"):
                    cursor.execute(f"DELETE FROM {table}")
                cursor.executemany(
                    "INSERT INTO users (id, position, username, password_hash, avatar) VALUES (?, ?, ?, ?, ?)",
                    [
                        (user.id, position, user.username, user.password_hash, user.avatar)
                        for position, user in enumerate(snapshot.users)
                    ],
                )
                cursor.executemany(
                    """
                    INSERT INTO friendships (id, position, from_user, to_user, status, blocker_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (edge.id, position, edge.from_user, edge.to_user, edge.status, edge.blocker_id)
                        for position, edge in enumerate(snapshot.friendships)
                    ],
                )
                for position, group in enumerate(snapshot.groups):
                    cursor.execute(
                        "INSERT INTO chat_groups (id, position, name, avatar, creator_id) VALUES (?, ?, ?, ?, ?)",
                        (group.id, position, group.name, group.avatar, group.creator_id),
                    )
                    cursor.executemany(
                        "INSERT INTO group_members (group_id, user_id, position, name) VALUES (?, ?, ?, ?)",
                        [(group.id, m.id, idx, m.name) for idx, m in enumerate(group.members)],
                    )
                    cursor.executemany(
                        "INSERT INTO group_admins (group_id, user_id, position) VALUES (?, ?, ?)",
                        [(group.id, admin, idx) for idx, admin in enumerate(group.admins)],
                    )
                cursor.executemany(
                    """
                    INSERT INTO messages
                        (id, position, sender, target, is_group, content, type, ts_ms, sender_name, file_name)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            msg.id,
                            position,
                            msg.sender,
                            msg.target,
                            int(msg.is_group),
                            msg.content,
                            msg.type,
                            msg.timestamp,
                            msg.sender_name,
                            msg.file_name,
                        )
                        for position, msg in enumerate(snapshot.messages)
                    ],
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
