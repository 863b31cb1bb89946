import unittest

from parley.presence import Connection

from .core_util import Client, Core


class SessionGatewayTests(unittest.TestCase):
    def setUp(self):
        self.core = Core()

    def test_unknown_token_yields_no_connection_and_no_frames(self):
        frames: list = []
        self.assertIsNone(self.core.gateway.open("st_bogus", frames.append))
        self.assertIsNone(self.core.gateway.open(None, frames.append))
        self.assertEqual(frames, [])
        self.assertEqual(self.core.presence.online_users(), set())

    def test_session_of_deleted_user_is_rejected(self):
        alice = self.core.register("alice")
        with self.core.store.transaction() as snapshot:
            snapshot.users.clear()
        self.assertIsNone(alice.connect().connection)

    def test_open_sends_init_data_first(self):
        alice = self.core.register("alice").connect()

        self.assertEqual(alice.frames[0]["t"], "init_data")
        body = alice.frames[0]["body"]
        self.assertEqual(body["currentUser"]["username"], "alice")
        self.assertEqual(body["requests"], [])
        self.assertEqual(body["friends"], [])
        self.assertEqual(body["groups"], [])
        self.assertTrue(self.core.presence.is_online(alice.user_id))

    def test_connect_and_disconnect_refresh_reachable_friends(self):
        alice, bob = self.core.online("alice", "bob")
        self.core.befriend(alice, bob)
        bob.disconnect()
        alice.clear()

        bob.connect()
        self.assertEqual(alice.count("refresh_data"), 1)
        self.assertEqual(bob.init_data()["friends"][0]["status"], "online")

        alice.clear()
        bob.disconnect()
        self.assertEqual(alice.count("refresh_data"), 1)
        self.assertFalse(self.core.presence.is_online(bob.user_id))

    def test_blocked_friend_is_not_told_about_presence(self):
        alice, bob = self.core.online("alice", "bob")
        self.core.befriend(alice, bob)
        alice.send("block_user", {"userId": bob.user_id})
        bob.disconnect()
        alice.clear()

        bob.connect()
        self.assertEqual(alice.count("refresh_data"), 0)

    def test_connection_is_subscribed_to_existing_groups(self):
        alice, bob = self.core.online("alice", "bob")
        alice.send("create_group", {"name": "Team", "members": [bob.user_id]})
        group_id = alice.last("success")["groupId"]
        bob.disconnect()

        bob.connect()
        self.assertIn(group_id, bob.connection.channels)
        self.assertIn(bob.user_id, bob.connection.channels)

    def test_second_connection_replaces_first_without_going_offline(self):
        alice, bob = self.core.online("alice", "bob")
        self.core.befriend(alice, bob)
        second = Client(self.core, "bob", bob.token).connect()
        alice.clear()

        self.assertIs(self.core.presence.connection_for(bob.user_id), second.connection)
        bob.disconnect()
        self.assertTrue(self.core.presence.is_online(bob.user_id))
        self.assertEqual(alice.count("refresh_data"), 0)

        second.clear()
        alice.send("send_message", {"target": bob.user_id, "content": "still there?"})
        self.assertEqual(second.last("new_message")["content"], "still there?")

    def test_announce_refreshes_user_and_friends(self):
        alice, bob = self.core.online("alice", "bob")
        self.core.befriend(alice, bob)
        alice.clear()
        bob.clear()

        self.core.gateway.announce(alice.user_id)

        self.assertEqual(alice.count("refresh_data"), 1)
        self.assertEqual(bob.count("refresh_data"), 1)

    def test_handle_routes_to_router_with_request_id(self):
        frames: list = []
        alice = self.core.register("alice")
        connection = self.core.gateway.open(alice.token, frames.append)
        self.assertIsInstance(connection, Connection)

        self.assertFalse(self.core.gateway.handle(connection, "friend_request", {"username": "ghost"}, request_id="r9"))
        self.assertEqual(frames[-1]["id"], "r9")
        self.assertEqual(frames[-1]["body"]["code"], "not_found")


if __name__ == "__main__":
    unittest.main()
