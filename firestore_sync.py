"""Firestore sync backend (real-time subscription variant).

The whole remote document lives at users/{user_id}. push() overwrites it
unconditionally; subscribe() forwards every snapshot Firestore delivers.
"""

import logging
from typing import Any, Callable, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from errors import SyncError
from sync import RemoteListener, SyncAdapter

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"


def _get_firebase_app(credentials_path: Optional[str] = None):
    """Get or initialize the Firebase Admin app."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if credentials_path:
        cred = credentials.Certificate(credentials_path)
    else:
        # Use Application Default Credentials
        cred = credentials.ApplicationDefault()
    app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin SDK initialized")
    return app


class FirestoreSyncAdapter(SyncAdapter):
    name = "firestore"

    def __init__(self, user_id: str, client: Any, timeout: Optional[float] = 10.0) -> None:
        if not user_id:
            raise SyncError("A user id is required for Firestore sync.")
        self.user_id = user_id
        self._client = client
        self._timeout = timeout
        self._watches: list[Any] = []

    @classmethod
    def from_credentials(
        cls, user_id: str, credentials_path: Optional[str] = None, timeout: Optional[float] = 10.0
    ) -> "FirestoreSyncAdapter":
        try:
            app = _get_firebase_app(credentials_path)
            client = firestore.client(app)
        except Exception as e:
            raise SyncError(f"Failed to initialize Firebase: {e}") from e
        return cls(user_id, client, timeout=timeout)

    def _doc(self):
        return self._client.collection(USERS_COLLECTION).document(self.user_id)

    def push(self, document: dict) -> None:
        # Last writer wins: no merge, no version check.
        try:
            self._doc().set(document, timeout=self._timeout)
        except Exception as e:
            raise SyncError(f"Firestore write failed: {e}") from e

    def pull(self) -> Optional[dict]:
        try:
            snapshot = self._doc().get(timeout=self._timeout)
        except Exception as e:
            raise SyncError(f"Firestore read failed: {e}") from e
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    def subscribe(self, on_remote_change: RemoteListener) -> Callable[[], None]:
        def on_snapshot(doc_snapshots, changes, read_time) -> None:
            # Runs on a Firestore background thread.
            for snap in doc_snapshots:
                if snap.exists:
                    on_remote_change(snap.to_dict())

        try:
            watch = self._doc().on_snapshot(on_snapshot)
        except Exception as e:
            raise SyncError(f"Firestore listener failed to start: {e}") from e
        self._watches.append(watch)

        def unsubscribe() -> None:
            if watch in self._watches:
                self._watches.remove(watch)
                watch.unsubscribe()

        return unsubscribe

    def close(self) -> None:
        for watch in list(self._watches):
            watch.unsubscribe()
        self._watches.clear()
