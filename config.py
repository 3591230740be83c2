"""Runtime configuration.

Values come from ELECTROMANAGE_* environment variables or a .env file.
The sync backend is chosen once here, at startup.
"""

from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import SyncError
from gist_sync import GITHUB_API_URL, GistSyncAdapter
from services import SettingsService
from sync import NullSyncAdapter, SyncAdapter


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ELECTROMANAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: str = "electromanage.db"
    seed_demo_data: bool = True
    log_level: str = "INFO"

    # --- sync backend: none | gist | firestore ---
    sync_backend: Literal["none", "gist", "firestore"] = "none"
    sync_timeout: float = 10.0
    # Seconds between remote checks while listening (polling backends only).
    sync_poll_interval: float = 30.0

    # --- gist (sync_backend=gist) ---
    github_token: str = ""
    github_api_url: str = GITHUB_API_URL

    # --- firestore (sync_backend=firestore) ---
    firebase_credentials_path: Optional[str] = None
    firebase_user_id: str = ""

    @field_validator("sync_timeout", "sync_poll_interval")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def build_sync_adapter(config: Settings, settings: SettingsService) -> SyncAdapter:
    """Picks the backend named by the configuration."""
    if config.sync_backend == "gist":
        if not config.github_token:
            raise SyncError("ELECTROMANAGE_GITHUB_TOKEN is required for gist sync.")
        return GistSyncAdapter(
            token=config.github_token,
            settings=settings,
            base_url=config.github_api_url,
            timeout=config.sync_timeout,
        )
    if config.sync_backend == "firestore":
        # Imported lazily so firebase-admin is only initialised when selected.
        from firestore_sync import FirestoreSyncAdapter

        return FirestoreSyncAdapter.from_credentials(
            user_id=config.firebase_user_id,
            credentials_path=config.firebase_credentials_path,
            timeout=config.sync_timeout,
        )
    return NullSyncAdapter()
