from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    # "firestore" in production; "memory" keeps documents in-process (dev + tests)
    store_backend: str = "firestore"

    # Host polling loop
    poll_interval_seconds: float = 2.0
    # Stop hosting a room that sits in the lobby this long
    lobby_timeout_seconds: float = 3600.0

    # Room codes: short, uppercase alphanumeric, retried on collision
    room_code_length: int = 4
    room_code_attempts: int = 10

    min_players: int = 3
    max_players: int = 12

    # CORS origins: set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
