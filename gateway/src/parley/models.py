from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List
from urllib.parse import quote

PENDING = "pending"
ACCEPTED = "accepted"

TEXT = "text"


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    avatar: str

    def to_public(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username, "avatar": self.avatar}

    def to_dict(self) -> dict[str, Any]:
        data = self.to_public()
        data["passwordHash"] = self.password_hash
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            username=data["username"],
            password_hash=data.get("passwordHash", ""),
            avatar=data.get("avatar", ""),
        )


@dataclass
class Friendship:
    """Relationship record for an unordered pair of users."""

    id: str
    from_user: str
    to_user: str
    status: str = PENDING
    blocker_id: str | None = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.from_user, self.to_user)

    def other(self, user_id: str) -> str:
        return self.to_user if self.from_user == user_id else self.from_user

    @property
    def is_blocked(self) -> bool:
        return self.blocker_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.from_user,
            "to": self.to_user,
            "status": self.status,
            "blockerId": self.blocker_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Friendship":
        return cls(
            id=data["id"],
            from_user=data["from"],
            to_user=data["to"],
            status=data.get("status", PENDING),
            blocker_id=data.get("blockerId") or None,
        )


@dataclass
class GroupMember:
    id: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass
class Group:
    id: str
    name: str
    avatar: str
    creator_id: str
    members: List[GroupMember] = field(default_factory=list)
    admins: List[str] = field(default_factory=list)

    def member_ids(self) -> list[str]:
        return [member.id for member in self.members]

    def has_member(self, user_id: str) -> bool:
        return any(member.id == user_id for member in self.members)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "creatorId": self.creator_id,
            "members": [member.to_dict() for member in self.members],
            "admins": list(self.admins),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Group":
        return cls(
            id=data["id"],
            name=data["name"],
            avatar=data.get("avatar", ""),
            creator_id=data["creatorId"],
            members=[GroupMember(id=m["id"], name=m.get("name", "")) for m in data.get("members", [])],
            admins=list(data.get("admins", [])),
        )


@dataclass
class Message:
    id: str
    sender: str
    target: str
    is_group: bool
    content: str
    type: str
    timestamp: int
    sender_name: str | None = None
    file_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "from": self.sender,
            "to": self.target,
            "isGroup": self.is_group,
            "content": self.content,
            "type": self.type,
            "timestamp": self.timestamp,
        }
        if self.sender_name is not None:
            data["senderName"] = self.sender_name
        if self.file_name is not None:
            data["fileName"] = self.file_name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            sender=data["from"],
            target=data["to"],
            is_group=bool(data.get("isGroup", False)),
            content=data.get("content", ""),
            type=data.get("type") or TEXT,
            timestamp=int(data.get("timestamp", 0)),
            sender_name=data.get("senderName"),
            file_name=data.get("fileName"),
        )


@dataclass
class Snapshot:
    """The whole application state, loaded and saved as one unit."""

    users: List[User] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    friendships: List[Friendship] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)

    def user_by_id(self, user_id: str) -> User | None:
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def user_by_name(self, username: str) -> User | None:
        wanted = username.casefold()
        for user in self.users:
            if user.username.casefold() == wanted:
                return user
        return None

    def group_by_id(self, group_id: str) -> Group | None:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def message_by_id(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def edge_by_id(self, edge_id: str) -> Friendship | None:
        for edge in self.friendships:
            if edge.id == edge_id:
                return edge
        return None

    def edge_between(self, a: str, b: str) -> Friendship | None:
        for edge in self.friendships:
            if {edge.from_user, edge.to_user} == {a, b}:
                return edge
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": [user.to_dict() for user in self.users],
            "messages": [message.to_dict() for message in self.messages],
            "friendships": [edge.to_dict() for edge in self.friendships],
            "groups": [group.to_dict() for group in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "Snapshot":
        data = data or {}
        return cls(
            users=[User.from_dict(item) for item in data.get("users", [])],
            messages=[Message.from_dict(item) for item in data.get("messages", [])],
            friendships=[Friendship.from_dict(item) for item in data.get("friendships", [])],
            groups=[Group.from_dict(item) for item in data.get("groups", [])],
        )


DEFAULT_AVATAR_TEMPLATE = (
    "https://ui-avatars.com/api/?name={initials}&background=3b82f6&color=fff&size=128&bold=true"
)


def generated_avatar(name: str, template: str = DEFAULT_AVATAR_TEMPLATE) -> str:
    """Initials-based placeholder avatar for users and groups without one."""

    return template.format(initials=quote(name.strip()[:2] or "?"))
