import json
import os
import tempfile
import threading
import unittest

from parley.models import ACCEPTED, Friendship, Group, GroupMember, Message, Snapshot, User
from parley.sessions import SessionStore
from parley.sqlite_backend import SQLiteBackend
from parley.sqlite_sessions import SQLiteSessionStore
from parley.sqlite_store import SQLiteSnapshotStore
from parley.store import InMemorySnapshotStore, JsonFileSnapshotStore

from .core_util import FakeClock


def _sample_snapshot() -> Snapshot:
    return Snapshot(
        users=[
            User(id="u_b", username="bob", password_hash="h2", avatar="b.png"),
            User(id="u_a", username="alice", password_hash="h1", avatar="a.png"),
        ],
        friendships=[Friendship(id="f1", from_user="u_a", to_user="u_b", status=ACCEPTED, blocker_id="u_b")],
        groups=[
            Group(
                id="g1",
                name="Team",
                avatar="g.png",
                creator_id="u_b",
                members=[GroupMember("u_b", "bob"), GroupMember("u_a", "alice")],
                admins=["u_b"],
            )
        ],
        messages=[
            Message(
                id="m2",
                sender="u_a",
                target="g1",
                is_group=True,
                content="yo",
                type="text",
                timestamp=20,
                sender_name="alice",
            ),
            Message(
                id="m1",
                sender="u_a",
                target="u_b",
                is_group=False,
                content="/uploads/1-a.png",
                type="image/png",
                timestamp=10,
                file_name="a.png",
            ),
        ],
    )


class _TransactionContract:
    def make_store(self):
        raise NotImplementedError

    def test_empty_store_loads_empty_snapshot(self):
        store = self.make_store()
        self.assertEqual(store.read(), Snapshot())

    def test_saved_snapshot_reloads_in_order(self):
        store = self.make_store()
        with store.transaction() as snapshot:
            sample = _sample_snapshot()
            snapshot.users.extend(sample.users)
            snapshot.friendships.extend(sample.friendships)
            snapshot.groups.extend(sample.groups)
            snapshot.messages.extend(sample.messages)

        self.assertEqual(store.read(), _sample_snapshot())

    def test_failed_transaction_is_not_saved(self):
        store = self.make_store()
        with store.transaction() as snapshot:
            snapshot.users.append(User(id="u1", username="alice", password_hash="h", avatar=""))

        with self.assertRaises(RuntimeError):
            with store.transaction() as snapshot:
                snapshot.users.clear()
                raise RuntimeError("abort")

        self.assertEqual([user.id for user in store.read().users], ["u1"])

    def test_concurrent_writers_never_lose_updates(self):
        store = self.make_store()
        writers, appends = 8, 25
        start = threading.Barrier(writers)
        failures: list = []

        def write(worker: int) -> None:
            try:
                start.wait()
                for index in range(appends):
                    with store.transaction() as snapshot:
                        snapshot.friendships.append(
                            Friendship(id=f"f{worker}-{index}", from_user=f"u{worker}", to_user=f"v{index}")
                        )
            except Exception as exc:
                failures.append(exc)

        threads = [threading.Thread(target=write, args=(worker,)) for worker in range(writers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(failures, [])
        ids = {edge.id for edge in store.read().friendships}
        self.assertEqual(len(ids), writers * appends)

    def test_read_returns_independent_copy(self):
        store = self.make_store()
        snapshot = store.read()
        snapshot.users.append(User(id="u1", username="alice", password_hash="h", avatar=""))
        self.assertEqual(store.read().users, [])


class InMemorySnapshotStoreTests(_TransactionContract, unittest.TestCase):
    def make_store(self):
        return InMemorySnapshotStore()


class JsonFileSnapshotStoreTests(_TransactionContract, unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmpdir.name, "data", "db.json")

    def tearDown(self):
        self._tmpdir.cleanup()

    def make_store(self):
        return JsonFileSnapshotStore(self.path)

    def test_file_uses_wire_keys(self):
        store = self.make_store()
        with store.transaction() as snapshot:
            snapshot.friendships.extend(_sample_snapshot().friendships)

        with open(self.path, encoding="utf-8") as handle:
            data = json.load(handle)
        self.assertEqual(
            data["friendships"],
            [{"id": "f1", "from": "u_a", "to": "u_b", "status": "accepted", "blockerId": "u_b"}],
        )
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["db.json"])

    def test_corrupt_file_loads_empty(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            handle.write("{not json")

        with self.assertLogs("parley.store", level="ERROR"):
            self.assertEqual(self.make_store().read(), Snapshot())

    def test_non_object_file_loads_empty(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            handle.write("[]")

        with self.assertLogs("parley.store", level="ERROR"):
            self.assertEqual(self.make_store().read(), Snapshot())

    def test_missing_collections_default_to_empty(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump({"users": [{"id": "u1", "username": "alice", "passwordHash": "h", "avatar": ""}]}, handle)

        snapshot = self.make_store().read()
        self.assertEqual([user.username for user in snapshot.users], ["alice"])
        self.assertEqual(snapshot.messages, [])


class SQLiteSnapshotStoreTests(_TransactionContract, unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "parley.db")
        self.backends = []

    def tearDown(self):
        for backend in self.backends:
            backend.close()
        self._tmpdir.cleanup()

    def _backend(self):
        backend = SQLiteBackend(self.db_path)
        self.backends.append(backend)
        return backend

    def make_store(self):
        return SQLiteSnapshotStore(self._backend())

    def test_snapshot_survives_reopen(self):
        store = self.make_store()
        with store.transaction() as snapshot:
            snapshot.users.extend(_sample_snapshot().users)
            snapshot.messages.extend(_sample_snapshot().messages)

        reopened = self.make_store()
        self.assertEqual(reopened.read().users, _sample_snapshot().users)
        self.assertEqual(reopened.read().messages, _sample_snapshot().messages)

    def test_schema_version_is_recorded(self):
        backend = self._backend()
        version = backend.connection.execute("PRAGMA user_version").fetchone()[0]
        self.assertEqual(version, 1)

    def test_unsupported_schema_version_rejected(self):
        backend = self._backend()
        backend.connection.execute("PRAGMA user_version = 99")
        with self.assertRaises(ValueError):
            SQLiteBackend(self.db_path)


class _SessionContract:
    def make_sessions(self, clock, ttl_ms):
        raise NotImplementedError

    def test_session_expires_after_ttl(self):
        clock = FakeClock()
        sessions = self.make_sessions(clock, 100)
        session = sessions.create("u1")

        self.assertTrue(session.session_token.startswith("st_"))
        self.assertEqual(sessions.get(session.session_token), session)
        clock.advance(100)
        self.assertIsNone(sessions.get(session.session_token))

    def test_invalidate(self):
        sessions = self.make_sessions(FakeClock(), 1000)
        session = sessions.create("u1")
        sessions.invalidate(session)
        self.assertIsNone(sessions.get(session.session_token))
        self.assertIsNone(sessions.get("st_unknown"))


class SessionStoreTests(_SessionContract, unittest.TestCase):
    def make_sessions(self, clock, ttl_ms):
        return SessionStore(ttl_ms, now_func=clock.now)


class SQLiteSessionStoreTests(_SessionContract, unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.backend = SQLiteBackend(os.path.join(self._tmpdir.name, "sessions.db"))

    def tearDown(self):
        self.backend.close()
        self._tmpdir.cleanup()

    def make_sessions(self, clock, ttl_ms):
        return SQLiteSessionStore(self.backend, ttl_ms, now_func=clock.now)

    def test_purge_expired(self):
        clock = FakeClock()
        sessions = self.make_sessions(clock, 100)
        stale = sessions.create("u1")
        clock.advance(50)
        fresh = sessions.create("u2")
        clock.advance(60)

        self.assertEqual(sessions.purge_expired(), 1)
        self.assertIsNone(sessions.get(stale.session_token))
        self.assertIsNotNone(sessions.get(fresh.session_token))


if __name__ == "__main__":
    unittest.main()
