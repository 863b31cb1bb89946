from __future__ import annotations

from enum import Enum
from typing import Any, List

from .models import ACCEPTED, PENDING, Group, Snapshot
from .presence import PresenceRegistry


class MessagePermission(str, Enum):
    ALLOWED = "allowed"
    BLOCKED_BY_SELF = "blocked_by_self"
    BLOCKED_BY_PEER = "blocked_by_peer"
    NOT_FRIENDS = "not_friends"


class SocialGraph:
    """Read-only view over a snapshot: contact lists and permission checks."""

    def __init__(self, snapshot: Snapshot, presence: PresenceRegistry | None = None) -> None:
        self.snapshot = snapshot
        self.presence = presence

    def pending_requests(self, user_id: str) -> list[dict[str, Any]]:
        requests = []
        for edge in self.snapshot.friendships:
            if edge.to_user != user_id or edge.status != PENDING:
                continue
            requester = self.snapshot.user_by_id(edge.from_user)
            requests.append(
                {
                    "id": edge.id,
                    "from": edge.from_user,
                    "fromName": requester.username if requester else None,
                }
            )
        return requests

    def friends(self, user_id: str) -> list[dict[str, Any]]:
        friends = []
        for edge in self.snapshot.friendships:
            if edge.status != ACCEPTED or not edge.involves(user_id):
                continue
            friend_id = edge.other(user_id)
            friend = self.snapshot.user_by_id(friend_id)
            if friend is None:
                continue
            online = self.presence is not None and self.presence.is_online(friend_id)
            entry = friend.to_public()
            entry.update(
                {
                    "friendshipId": edge.id,
                    "status": "online" if online else "offline",
                    "isBlocked": edge.blocker_id in (user_id, friend_id),
                    "blockerId": edge.blocker_id,
                }
            )
            friends.append(entry)
        return friends

    def groups_for(self, user_id: str) -> List[Group]:
        return [group for group in self.snapshot.groups if group.has_member(user_id)]

    def init_data(self, user_id: str) -> dict[str, Any]:
        user = self.snapshot.user_by_id(user_id)
        return {
            "currentUser": user.to_public() if user else None,
            "requests": self.pending_requests(user_id),
            "friends": self.friends(user_id),
            "groups": [group.to_dict() for group in self.groups_for(user_id)],
        }

    def reachable_friends(self, user_id: str) -> list[str]:
        """Accepted, non-blocked friends; they see this user's presence changes."""

        return [
            edge.other(user_id)
            for edge in self.snapshot.friendships
            if edge.status == ACCEPTED and edge.involves(user_id) and not edge.is_blocked
        ]

    def are_friends(self, a: str, b: str) -> bool:
        edge = self.snapshot.edge_between(a, b)
        return edge is not None and edge.status == ACCEPTED

    def can_message(self, sender: str, recipient: str) -> MessagePermission:
        edge = self.snapshot.edge_between(sender, recipient)
        if edge is not None and edge.blocker_id == sender:
            return MessagePermission.BLOCKED_BY_SELF
        if edge is not None and edge.blocker_id == recipient:
            return MessagePermission.BLOCKED_BY_PEER
        if edge is None or edge.status != ACCEPTED:
            return MessagePermission.NOT_FRIENDS
        return MessagePermission.ALLOWED

    def is_group_admin(self, user_id: str, group: Group) -> bool:
        return user_id == group.creator_id or user_id in group.admins
