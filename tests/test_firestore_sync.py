import unittest
from typing import Optional
from unittest import mock

from errors import SyncError
from firestore_sync import USERS_COLLECTION, FirestoreSyncAdapter


class FakeSnapshot:
    def __init__(self, data: Optional[dict]) -> None:
        self._data = data
        self.exists = data is not None

    def to_dict(self) -> Optional[dict]:
        return dict(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self) -> None:
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeDocument:
    def __init__(self) -> None:
        self.data: Optional[dict] = None
        self.callbacks = []
        self.watches: list[FakeWatch] = []
        self.fail = False
        self.timeouts = []

    def set(self, document: dict, timeout=None) -> None:
        self.timeouts.append(timeout)
        if self.fail:
            raise RuntimeError("deadline exceeded")
        self.data = dict(document)

    def get(self, timeout=None) -> FakeSnapshot:
        self.timeouts.append(timeout)
        if self.fail:
            raise RuntimeError("unavailable")
        return FakeSnapshot(self.data)

    def on_snapshot(self, callback) -> FakeWatch:
        self.callbacks.append(callback)
        watch = FakeWatch()
        self.watches.append(watch)
        return watch

    def deliver(self) -> None:
        for callback in self.callbacks:
            callback([FakeSnapshot(self.data)], [], None)


class FakeClient:
    def __init__(self) -> None:
        self.documents: dict[tuple[str, str], FakeDocument] = {}

    def collection(self, name: str):
        client = self

        class _Collection:
            def document(self, doc_id: str) -> FakeDocument:
                return client.documents.setdefault((name, doc_id), FakeDocument())

        return _Collection()


class FirestoreSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = FakeClient()
        self.adapter = FirestoreSyncAdapter("user-1", self.client, timeout=3.0)
        self.doc = self.client.collection(USERS_COLLECTION).document("user-1")

    def test_user_id_required(self) -> None:
        with self.assertRaises(SyncError):
            FirestoreSyncAdapter("", self.client)

    def test_push_overwrites_user_document(self) -> None:
        self.adapter.push({"components": [], "lastUpdated": "a"})
        self.adapter.push({"cart": [], "lastUpdated": "b"})
        self.assertEqual(self.doc.data, {"cart": [], "lastUpdated": "b"})
        self.assertEqual(self.doc.timeouts, [3.0, 3.0])

    def test_pull_missing_document(self) -> None:
        self.assertIsNone(self.adapter.pull())

    def test_pull_returns_document(self) -> None:
        self.adapter.push({"components": [], "lastUpdated": "a"})
        self.assertEqual(self.adapter.pull(), {"components": [], "lastUpdated": "a"})

    def test_backend_errors_become_sync_errors(self) -> None:
        self.doc.fail = True
        with self.assertRaises(SyncError):
            self.adapter.push({})
        with self.assertRaises(SyncError):
            self.adapter.pull()

    def test_subscribe_forwards_existing_snapshots(self) -> None:
        seen = []
        unsubscribe = self.adapter.subscribe(seen.append)
        self.doc.deliver()
        self.assertEqual(seen, [])

        self.adapter.push({"lastUpdated": "x"})
        self.doc.deliver()
        self.assertEqual(seen, [{"lastUpdated": "x"}])

        unsubscribe()
        self.assertTrue(self.doc.watches[0].unsubscribed)

    def test_close_stops_all_watches(self) -> None:
        self.adapter.subscribe(lambda d: None)
        self.adapter.subscribe(lambda d: None)
        self.adapter.close()
        self.assertTrue(all(w.unsubscribed for w in self.doc.watches))

    def test_from_credentials_wraps_init_failure(self) -> None:
        with mock.patch("firestore_sync._get_firebase_app", side_effect=ValueError("bad key file")):
            with self.assertRaises(SyncError):
                FirestoreSyncAdapter.from_credentials("user-1", "/nonexistent.json")

    def test_from_credentials_uses_firestore_client(self) -> None:
        app = object()
        with mock.patch("firestore_sync._get_firebase_app", return_value=app), \
                mock.patch("firestore_sync.firestore.client", return_value=self.client) as client:
            adapter = FirestoreSyncAdapter.from_credentials("user-2")
        client.assert_called_once_with(app)
        adapter.push({"lastUpdated": "y"})
        self.assertEqual(self.client.documents[(USERS_COLLECTION, "user-2")].data, {"lastUpdated": "y"})


if __name__ == "__main__":
    unittest.main(verbosity=2)
