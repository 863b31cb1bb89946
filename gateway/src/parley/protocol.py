"""Event names, frame envelope and typed intent payloads of the client protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import ValidationFailure
from .models import TEXT

PROTOCOL_VERSION = 1

# Inbound intents (client -> server)
FRIEND_REQUEST = "friend_request"
ACCEPT_REQUEST = "accept_request"
DECLINE_REQUEST = "decline_request"
REMOVE_FRIEND = "remove_friend"
BLOCK_USER = "block_user"
CREATE_GROUP = "create_group"
ADD_MEMBERS_TO_GROUP = "add_members_to_group"
GET_HISTORY = "get_history"
SEND_MESSAGE = "send_message"
DELETE_MESSAGE = "delete_message"
REFRESH_DATA = "refresh_data"

# Outbound notifications (server -> client)
INIT_DATA = "init_data"
CHAT_HISTORY = "chat_history"
NEW_MESSAGE = "new_message"
MESSAGE_SENT = "message_sent"
MESSAGE_DELETED = "message_deleted"
SUCCESS = "success"
ERROR = "error"

PING = "ping"
PONG = "pong"


def frame(event: str, body: Any = None, *, request_id: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"v": PROTOCOL_VERSION, "t": event}
    if request_id is not None:
        message["id"] = request_id
    if body is not None:
        message["body"] = body
    return message


def error_frame(code: str, text: str, *, request_id: str | None = None) -> dict[str, Any]:
    return frame(ERROR, {"code": code, "text": text}, request_id=request_id)


def _require_str(body: Dict[str, Any], key: str, *, allow_empty: bool = False) -> str:
    value = body.get(key)
    if not isinstance(value, str):
        raise ValidationFailure(f"{key} required")
    value = value.strip()
    if not value and not allow_empty:
        raise ValidationFailure(f"{key} required")
    return value


def _optional_str(body: Dict[str, Any], key: str) -> str | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailure(f"{key} must be a string")
    return value.strip() or None


def _require_str_list(body: Dict[str, Any], key: str) -> list[str]:
    value = body.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ValidationFailure(f"{key} must be a list of user ids")
    return list(value)


def _flag(body: Dict[str, Any], key: str) -> bool:
    value = body.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationFailure(f"{key} must be a boolean")
    return value


@dataclass
class FriendRequest:
    username: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "FriendRequest":
        return cls(username=_require_str(body, "username"))


@dataclass
class RequestDecision:
    """Body of ``accept_request`` and ``decline_request``."""

    request_id: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "RequestDecision":
        return cls(request_id=_require_str(body, "requestId"))


@dataclass
class RemoveFriend:
    friend_id: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "RemoveFriend":
        return cls(friend_id=_require_str(body, "friendId"))


@dataclass
class BlockUser:
    user_id: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "BlockUser":
        return cls(user_id=_require_str(body, "userId"))


@dataclass
class CreateGroup:
    name: str
    members: List[str] = field(default_factory=list)
    avatar: str | None = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "CreateGroup":
        name = body.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationFailure("Group name cannot be empty.")
        return cls(
            name=name.strip(),
            members=_require_str_list(body, "members"),
            avatar=_optional_str(body, "avatar"),
        )


@dataclass
class AddMembers:
    group_id: str
    members_to_add: List[str] = field(default_factory=list)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "AddMembers":
        return cls(
            group_id=_require_str(body, "groupId"),
            members_to_add=_require_str_list(body, "membersToAdd"),
        )


@dataclass
class GetHistory:
    chat_id: str
    is_group: bool = False

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "GetHistory":
        return cls(chat_id=_require_str(body, "chatId"), is_group=_flag(body, "isGroup"))


@dataclass
class SendMessage:
    target: str
    content: str
    type: str = TEXT
    is_group: bool = False
    file_name: str | None = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "SendMessage":
        content = body.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationFailure("Message content cannot be empty.")
        return cls(
            target=_require_str(body, "target"),
            content=content,
            type=_optional_str(body, "type") or TEXT,
            is_group=_flag(body, "isGroup"),
            file_name=_optional_str(body, "fileName"),
        )


@dataclass
class DeleteMessage:
    message_id: str
    chat_id: str | None = None
    is_group: bool = False

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "DeleteMessage":
        return cls(
            message_id=_require_str(body, "messageId"),
            chat_id=_optional_str(body, "chatId"),
            is_group=_flag(body, "isGroup"),
        )
