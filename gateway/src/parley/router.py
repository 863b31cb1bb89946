"""Dispatches client intents to validated snapshot mutations and fans results out."""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Dict

from . import protocol as p
from .errors import Conflict, GatewayError, NotFound, PermissionDenied, ValidationFailure
from .models import (
    ACCEPTED,
    DEFAULT_AVATAR_TEMPLATE,
    Friendship,
    Group,
    GroupMember,
    PENDING,
    Message,
    Snapshot,
    generated_avatar,
)
from .presence import Connection, PresenceRegistry
from .sessions import _now_ms
from .social import MessagePermission, SocialGraph
from .store import SnapshotStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], None]

_BLOCK_ERRORS = {
    MessagePermission.BLOCKED_BY_SELF: "You have blocked this user. Unblock to send messages.",
    MessagePermission.BLOCKED_BY_PEER: "You are blocked by this user.",
    MessagePermission.NOT_FRIENDS: "You can only message friends.",
}


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_urlsafe(12)}"


class ConversationRouter:
    """Maps each inbound intent name to a handler.

    Handlers validate against the snapshot inside a store transaction and only
    then mutate it; any :class:`GatewayError` aborts the transaction unsaved
    and is reported to the calling connection as a single ``error`` frame.
    Fan-out happens after the transaction has been saved.
    """

    def __init__(
        self,
        store: SnapshotStore,
        presence: PresenceRegistry,
        *,
        avatar_template: str = DEFAULT_AVATAR_TEMPLATE,
        now_func: Callable[[], int] = _now_ms,
        id_func: Callable[[str], str] = new_id,
    ) -> None:
        self.store = store
        self.presence = presence
        self._avatar_template = avatar_template
        self._now = now_func
        self._new_id = id_func
        self._handlers: Dict[str, Handler] = {
            p.FRIEND_REQUEST: self.friend_request,
            p.ACCEPT_REQUEST: self.accept_request,
            p.DECLINE_REQUEST: self.decline_request,
            p.REMOVE_FRIEND: self.remove_friend,
            p.BLOCK_USER: self.block_user,
            p.CREATE_GROUP: self.create_group,
            p.ADD_MEMBERS_TO_GROUP: self.add_members_to_group,
            p.GET_HISTORY: self.get_history,
            p.SEND_MESSAGE: self.send_message,
            p.DELETE_MESSAGE: self.delete_message,
            p.REFRESH_DATA: self.refresh_data,
        }

    @property
    def intents(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def dispatch(self, caller: Connection, intent: str, body: Any = None, *, request_id: str | None = None) -> bool:
        """Run one intent for ``caller``; returns False when it was rejected."""

        handler = self._handlers.get(intent)
        if handler is None:
            caller.send(p.error_frame("invalid_request", f"unknown event: {intent}", request_id=request_id))
            return False
        if body is None:
            body = {}
        if not isinstance(body, dict):
            caller.send(p.error_frame("invalid_request", "body must be an object", request_id=request_id))
            return False
        try:
            handler(caller, body)
        except GatewayError as exc:
            logger.info("intent %s from %s rejected: %s", intent, caller.user_id, exc.text)
            caller.send(p.frame(p.ERROR, exc.to_body(), request_id=request_id))
            return False
        except Exception:
            logger.exception("intent %s from %s failed", intent, caller.user_id)
            caller.send(p.error_frame("internal_error", "Internal server error.", request_id=request_id))
            return False
        return True

    def send_init_data(self, connection: Connection) -> None:
        snapshot = self.store.read()
        connection.emit(p.INIT_DATA, SocialGraph(snapshot, self.presence).init_data(connection.user_id))

    def _refresh(self, *user_ids: str) -> None:
        for user_id in dict.fromkeys(user_ids):
            self.presence.broadcast(user_id, p.REFRESH_DATA)

    def _notify(self, user_id: str, text: str) -> None:
        self.presence.broadcast(user_id, p.SUCCESS, {"text": text})

    def refresh_data(self, caller: Connection, body: Dict[str, Any]) -> None:
        self.send_init_data(caller)

    # Friendship lifecycle

    def friend_request(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.FriendRequest.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            target = snapshot.user_by_name(intent.username)
            if target is None:
                raise NotFound("User not found.")
            if target.id == me:
                raise ValidationFailure("Cannot send a friend request to yourself.")
            existing = snapshot.edge_between(me, target.id)
            if existing is None:
                snapshot.friendships.append(Friendship(id=self._new_id("f"), from_user=me, to_user=target.id))
                auto_accepted = False
            elif existing.status == ACCEPTED:
                raise Conflict("You are already friends.")
            elif existing.from_user == me:
                raise Conflict("Request already sent.")
            elif existing.blocker_id == me:
                raise PermissionDenied("You have blocked this user. Unblock before adding them.")
            elif existing.blocker_id is not None:
                raise PermissionDenied("You are blocked by this user.")
            else:
                existing.status = ACCEPTED
                auto_accepted = True

        if auto_accepted:
            self._notify(me, "Friend added!")
            self._notify(target.id, "Friend added!")
            self._refresh(me, target.id)
            return
        self._refresh(target.id)
        caller.emit(p.SUCCESS, {"text": "Friend request sent."})

    def _pending_request_for(self, snapshot: Snapshot, request_id: str, me: str) -> Friendship:
        edge = snapshot.edge_by_id(request_id)
        if edge is None or edge.to_user != me or edge.status != PENDING:
            raise NotFound("Request not found or already processed.")
        return edge

    def accept_request(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.RequestDecision.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            edge = self._pending_request_for(snapshot, intent.request_id, me)
            if edge.blocker_id == me:
                raise PermissionDenied("Unblock this user before accepting their request.")
            if edge.blocker_id is not None:
                raise PermissionDenied("You are blocked by this user.")
            edge.status = ACCEPTED

        self._notify(me, "Request accepted. Friend added!")
        self._notify(edge.from_user, "Request accepted. Friend added!")
        self._refresh(me, edge.from_user)

    def decline_request(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.RequestDecision.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            edge = self._pending_request_for(snapshot, intent.request_id, me)
            snapshot.friendships.remove(edge)

        caller.emit(p.SUCCESS, {"text": "Request declined."})
        self._refresh(edge.from_user, me)

    def remove_friend(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.RemoveFriend.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            edge = snapshot.edge_between(me, intent.friend_id)
            if edge is None or edge.status != ACCEPTED:
                raise NotFound("Friendship not found.")
            snapshot.friendships.remove(edge)

        self._notify(me, "Friend removed.")
        self._notify(intent.friend_id, "Friend removed by partner.")
        self._refresh(me, intent.friend_id)

    def block_user(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.BlockUser.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            edge = snapshot.edge_between(me, intent.user_id)
            if edge is None:
                raise NotFound("You can only block users you have a relationship with.")
            if edge.blocker_id == me:
                edge.blocker_id = None
                text = "User unblocked."
            elif edge.blocker_id is not None:
                raise PermissionDenied("This user has blocked you; only they can unblock.")
            else:
                edge.blocker_id = me
                text = "User blocked."

        caller.emit(p.SUCCESS, {"text": text})
        self._refresh(me, intent.user_id)

    # Groups

    def create_group(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.CreateGroup.from_body(body)
        me = caller.user_id
        member_ids = list(dict.fromkeys([me, *intent.members]))
        if len(member_ids) < 2:
            raise ValidationFailure("Group needs at least two members (including you).")

        with self.store.transaction() as snapshot:
            members = []
            for user_id in member_ids:
                user = snapshot.user_by_id(user_id)
                if user is None:
                    raise NotFound("One or more selected users were not found.")
                members.append(GroupMember(id=user.id, name=user.username))
            group = Group(
                id=self._new_id("g"),
                name=intent.name,
                avatar=intent.avatar or generated_avatar(intent.name, self._avatar_template),
                creator_id=me,
                members=members,
                admins=[me],
            )
            snapshot.groups.append(group)

        for member_id in member_ids:
            self.presence.join(member_id, group.id)
            self._refresh(member_id)
        caller.emit(p.SUCCESS, {"text": "Group created successfully.", "groupId": group.id})

    def add_members_to_group(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.AddMembers.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            group = snapshot.group_by_id(intent.group_id)
            if group is None:
                raise NotFound("Group not found.")
            if not SocialGraph(snapshot).is_group_admin(me, group):
                raise PermissionDenied("Only group admins can add members.")
            added = []
            for user_id in intent.members_to_add:
                if group.has_member(user_id):
                    continue
                user = snapshot.user_by_id(user_id)
                if user is None:
                    continue
                group.members.append(GroupMember(id=user.id, name=user.username))
                added.append(user.id)
            if not added:
                raise ValidationFailure("No new members were added.")

        for user_id in added:
            self.presence.join(user_id, group.id)
        self._refresh(*group.member_ids())
        caller.emit(p.SUCCESS, {"text": f"{len(added)} members added."})

    # Messages

    def get_history(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.GetHistory.from_body(body)
        me = caller.user_id
        snapshot = self.store.read()
        if intent.is_group:
            group = snapshot.group_by_id(intent.chat_id)
            if group is None:
                raise NotFound("Group not found.")
            if not group.has_member(me):
                raise PermissionDenied("You are not a member of this group.")
            history = [m for m in snapshot.messages if m.is_group and m.target == intent.chat_id]
        else:
            if snapshot.user_by_id(intent.chat_id) is None:
                raise NotFound("User not found.")
            history = [
                m
                for m in snapshot.messages
                if not m.is_group
                and ((m.sender == me and m.target == intent.chat_id) or (m.sender == intent.chat_id and m.target == me))
            ]
        history.sort(key=lambda m: m.timestamp)
        caller.emit(
            p.CHAT_HISTORY,
            {"chatId": intent.chat_id, "messages": [m.to_dict() for m in history], "isGroup": intent.is_group},
        )

    def _next_timestamp(self, snapshot: Snapshot) -> int:
        latest = snapshot.messages[-1].timestamp if snapshot.messages else 0
        return max(self._now(), latest)

    def send_message(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.SendMessage.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            sender = snapshot.user_by_id(me)
            if sender is None:
                raise NotFound("Sender not found.")
            if intent.is_group:
                group = snapshot.group_by_id(intent.target)
                if group is None:
                    raise NotFound("Group not found.")
                if not group.has_member(me):
                    raise PermissionDenied("You are not a member of this group.")
            else:
                if snapshot.user_by_id(intent.target) is None:
                    raise NotFound("User not found.")
                permission = SocialGraph(snapshot).can_message(me, intent.target)
                if permission is not MessagePermission.ALLOWED:
                    raise PermissionDenied(_BLOCK_ERRORS[permission])
            message = Message(
                id=self._new_id("m"),
                sender=me,
                target=intent.target,
                is_group=intent.is_group,
                content=intent.content,
                type=intent.type,
                timestamp=self._next_timestamp(snapshot),
                sender_name=sender.username if intent.is_group else None,
                file_name=intent.file_name,
            )
            snapshot.messages.append(message)

        payload = message.to_dict()
        self.presence.broadcast(message.target, p.NEW_MESSAGE, payload)
        if not message.is_group:
            self.presence.broadcast(me, p.MESSAGE_SENT, payload)

    def delete_message(self, caller: Connection, body: Dict[str, Any]) -> None:
        intent = p.DeleteMessage.from_body(body)
        me = caller.user_id
        with self.store.transaction() as snapshot:
            message = snapshot.message_by_id(intent.message_id)
            if message is None:
                raise NotFound("Message not found.")
            if message.sender != me:
                raise PermissionDenied("You can only delete your own messages.")
            if message.is_group:
                group = snapshot.group_by_id(message.target)
                recipients = group.member_ids() if group else []
            else:
                recipients = [message.target]
            snapshot.messages.remove(message)

        def notice(chat_id: str) -> dict[str, Any]:
            return {"messageId": message.id, "chatId": chat_id, "isGroup": message.is_group, "permanent": True}

        self.presence.broadcast(me, p.MESSAGE_DELETED, notice(message.target))
        for user_id in recipients:
            if user_id == me:
                continue
            chat_id = message.target if message.is_group else me
            self.presence.broadcast(user_id, p.MESSAGE_DELETED, notice(chat_id))
        caller.emit(p.SUCCESS, {"text": "Message permanently deleted for everyone."})
