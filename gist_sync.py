"""HTTP sync backend that keeps the remote document in a private GitHub gist.

The gist id is persisted as the `gistId` setting. A missing id means the
next push creates a gist; an id that answers 404 is dropped and replaced by
a fresh gist on push.
"""

import json
import logging
from typing import Any, Callable, Optional

import httpx

from errors import SyncError
from services import SettingsService
from sync import RemoteListener, SyncAdapter

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GIST_FILENAME = "electromanage-data.json"
GIST_DESCRIPTION = "ElectroManage Component Data"


class GistNotFound(SyncError):
    """The stored gist id no longer resolves remotely."""


class GistSyncAdapter(SyncAdapter):
    name = "gist"

    def __init__(
        self,
        token: str,
        settings: SettingsService,
        base_url: str = GITHUB_API_URL,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._token = token
        self._settings = settings
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._listeners: list[RemoteListener] = []
        self._last_seen: Optional[str] = None

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise SyncError("GitHub token is required for sync.")
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _request(self, method: str, url: str, payload: Optional[dict] = None) -> dict:
        try:
            response = self._client.request(method, url, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise SyncError(f"GitHub API timed out: {e}") from e
        except httpx.RequestError as e:
            raise SyncError(f"GitHub API unreachable: {e}") from e

        if response.status_code == 404:
            raise GistNotFound("Gist not found.", status_code=404)
        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("message", "Unknown error") if isinstance(body, dict) else "Unknown error"
            raise SyncError(f"GitHub API error: {response.status_code} - {message}", status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise SyncError("GitHub API returned a non-JSON body.") from e
        if not isinstance(body, dict):
            raise SyncError("GitHub API returned an unexpected body.", status_code=response.status_code)
        return body

    def _files(self, document: dict) -> dict[str, Any]:
        return {GIST_FILENAME: {"content": json.dumps(document, indent=2)}}

    @property
    def gist_id(self) -> Optional[str]:
        return self._settings.get("gistId") or None

    def _create(self, document: dict) -> str:
        result = self._request(
            "POST",
            "/gists",
            {"description": GIST_DESCRIPTION, "public": False, "files": self._files(document)},
        )
        gist_id = result.get("id")
        if not gist_id:
            raise SyncError("GitHub API did not return a gist id.")
        self._settings.set("gistId", gist_id)
        logger.info("Created gist %s", gist_id)
        return gist_id

    def push(self, document: dict) -> None:
        gist_id = self.gist_id
        if not gist_id:
            self._create(document)
        else:
            self._update(gist_id, document)
        # Our own write is not a remote change for poll().
        self._last_seen = document.get("lastUpdated")

    def _update(self, gist_id: str, document: dict) -> None:
        try:
            self._request(
                "PATCH",
                f"/gists/{gist_id}",
                {"description": f"{GIST_DESCRIPTION} - Last update: {document.get('lastUpdated', '')}",
                 "files": self._files(document)},
            )
        except GistNotFound:
            logger.warning("Gist %s is gone; creating a new one", gist_id)
            self._settings.delete("gistId")
            self._create(document)

    def pull(self) -> Optional[dict]:
        gist_id = self.gist_id
        if not gist_id:
            return None
        try:
            gist = self._request("GET", f"/gists/{gist_id}")
        except GistNotFound:
            # Stale id: forget it so the next push creates a fresh gist.
            self._settings.delete("gistId")
            raise
        file = (gist.get("files") or {}).get(GIST_FILENAME)
        if not file:
            raise SyncError(f"Gist {gist_id} has no {GIST_FILENAME} file.")
        content = file.get("content")
        if file.get("truncated") and file.get("raw_url"):
            content = self._fetch_raw(file["raw_url"])
        try:
            document = json.loads(content or "")
        except ValueError as e:
            raise SyncError(f"Gist {gist_id} content is not valid JSON.") from e
        if not isinstance(document, dict):
            raise SyncError(f"Gist {gist_id} content is not a JSON object.")
        return document

    def _fetch_raw(self, raw_url: str) -> str:
        try:
            response = self._client.get(raw_url, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SyncError(f"Could not fetch truncated gist content: {e}") from e
        return response.text

    def subscribe(self, on_remote_change: RemoteListener) -> Callable[[], None]:
        self._listeners.append(on_remote_change)

        def unsubscribe() -> None:
            if on_remote_change in self._listeners:
                self._listeners.remove(on_remote_change)

        return unsubscribe

    def poll(self) -> bool:
        """Fetches the gist and notifies listeners if it changed since the last poll."""
        document = self.pull()
        if document is None:
            return False
        marker = document.get("lastUpdated")
        if marker is not None and marker == self._last_seen:
            return False
        self._last_seen = marker
        for listener in list(self._listeners):
            listener(document)
        return True

    def close(self) -> None:
        self._client.close()
