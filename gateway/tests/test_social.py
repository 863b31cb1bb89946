import unittest

from parley.models import ACCEPTED, PENDING, Friendship, Group, GroupMember, Snapshot, User
from parley.presence import Connection, PresenceRegistry
from parley.social import MessagePermission, SocialGraph


def _user(user_id: str) -> User:
    return User(id=user_id, username=user_id.upper(), password_hash="x", avatar="")


class SocialGraphTests(unittest.TestCase):
    def setUp(self):
        self.snapshot = Snapshot(
            users=[_user("a"), _user("b"), _user("c"), _user("d")],
            friendships=[
                Friendship(id="f1", from_user="a", to_user="b", status=ACCEPTED),
                Friendship(id="f2", from_user="c", to_user="a", status=PENDING),
                Friendship(id="f3", from_user="a", to_user="d", status=ACCEPTED, blocker_id="d"),
            ],
            groups=[
                Group(
                    id="g1",
                    name="Team",
                    avatar="",
                    creator_id="a",
                    members=[GroupMember("a", "A"), GroupMember("b", "B")],
                    admins=["a"],
                )
            ],
        )
        self.presence = PresenceRegistry()
        self.graph = SocialGraph(self.snapshot, self.presence)

    def test_pending_requests_only_lists_incoming(self):
        self.assertEqual(self.graph.pending_requests("a"), [{"id": "f2", "from": "c", "fromName": "C"}])
        self.assertEqual(self.graph.pending_requests("c"), [])

    def test_friends_report_presence_and_block_state(self):
        self.presence.register(Connection(user_id="b", send=lambda frame: None))

        friends = {entry["id"]: entry for entry in self.graph.friends("a")}

        self.assertEqual(set(friends), {"b", "d"})
        self.assertEqual(friends["b"]["status"], "online")
        self.assertEqual(friends["d"]["status"], "offline")
        self.assertFalse(friends["b"]["isBlocked"])
        self.assertTrue(friends["d"]["isBlocked"])
        self.assertEqual(friends["d"]["blockerId"], "d")
        self.assertEqual(friends["b"]["friendshipId"], "f1")

    def test_reachable_friends_skip_blocked_and_pending(self):
        self.assertEqual(self.graph.reachable_friends("a"), ["b"])
        self.assertEqual(self.graph.reachable_friends("d"), [])

    def test_can_message(self):
        self.assertIs(self.graph.can_message("a", "b"), MessagePermission.ALLOWED)
        self.assertIs(self.graph.can_message("a", "c"), MessagePermission.NOT_FRIENDS)
        self.assertIs(self.graph.can_message("b", "c"), MessagePermission.NOT_FRIENDS)
        self.assertIs(self.graph.can_message("a", "d"), MessagePermission.BLOCKED_BY_PEER)
        self.assertIs(self.graph.can_message("d", "a"), MessagePermission.BLOCKED_BY_SELF)

    def test_init_data_shape(self):
        data = self.graph.init_data("b")

        self.assertEqual(data["currentUser"], {"id": "b", "username": "B", "avatar": ""})
        self.assertEqual(data["requests"], [])
        self.assertEqual([friend["id"] for friend in data["friends"]], ["a"])
        self.assertEqual([group["id"] for group in data["groups"]], ["g1"])
        self.assertEqual(self.graph.init_data("c")["groups"], [])

    def test_group_admin(self):
        group = self.snapshot.group_by_id("g1")
        self.assertTrue(self.graph.is_group_admin("a", group))
        self.assertFalse(self.graph.is_group_admin("b", group))

    def test_are_friends_is_symmetric(self):
        self.assertTrue(self.graph.are_friends("b", "a"))
        self.assertFalse(self.graph.are_friends("a", "c"))


if __name__ == "__main__":
    unittest.main()
