"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "msgsync.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

CONFLICT_POLICIES = ("server", "client", "manual")


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass
class Settings:
    """Runtime settings for the messaging core, read from the environment."""

    api_host: str = "localhost"
    api_port: int = 8000
    cors_origins: tuple[str, ...] = ("http://localhost:5173", "http://localhost:5174")  # Vite
    database_url: str | None = None

    # Remote messaging backend
    messaging_api_url: str = "http://localhost:9000/api"
    messaging_api_token: str | None = None
    messaging_api_timeout: float = 10.0

    # MessageCache
    cache_max_conversations: int = 100
    cache_max_messages: int = 500
    cache_max_age_ms: int = 30 * 60 * 1000
    cache_cleanup_interval_ms: int = 5 * 60 * 1000

    # OfflineMessageQueue
    queue_max_retries: int = 3
    queue_base_retry_delay_ms: int = 1000
    queue_max_retry_delay_ms: int = 30_000
    queue_batch_size: int = 5

    # MessageSyncManager
    sync_batch_size: int = 50
    sync_interval_ms: int = 30_000
    sync_conflict_resolution: str = "server"
    sync_user_id: str = "local_user"

    def __post_init__(self) -> None:
        if self.sync_conflict_resolution not in CONFLICT_POLICIES:
            raise ValueError(
                f"Invalid conflict resolution policy: {self.sync_conflict_resolution!r} "
                f"(expected one of {', '.join(CONFLICT_POLICIES)})"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (see .env)."""
        return cls(
            api_host=os.getenv("API_HOST", "localhost"),
            api_port=_env_int("API_PORT", 8000),
            cors_origins=tuple(
                origin.strip()
                for origin in os.getenv(
                    "CORS_ORIGINS", "http://localhost:5173,http://localhost:5174"
                ).split(",")
                if origin.strip()
            ),
            database_url=os.getenv("DATABASE_URL") or None,
            messaging_api_url=os.getenv(
                "MESSAGING_API_URL", "http://localhost:9000/api"
            ),
            messaging_api_token=os.getenv("MESSAGING_API_TOKEN") or None,
            messaging_api_timeout=float(os.getenv("MESSAGING_API_TIMEOUT", "10")),
            cache_max_conversations=_env_int("CACHE_MAX_CONVERSATIONS", 100),
            cache_max_messages=_env_int("CACHE_MAX_MESSAGES", 500),
            cache_max_age_ms=_env_int("CACHE_MAX_AGE_MS", 30 * 60 * 1000),
            cache_cleanup_interval_ms=_env_int(
                "CACHE_CLEANUP_INTERVAL_MS", 5 * 60 * 1000
            ),
            queue_max_retries=_env_int("QUEUE_MAX_RETRIES", 3),
            queue_base_retry_delay_ms=_env_int("QUEUE_BASE_RETRY_DELAY_MS", 1000),
            queue_max_retry_delay_ms=_env_int("QUEUE_MAX_RETRY_DELAY_MS", 30_000),
            queue_batch_size=_env_int("QUEUE_BATCH_SIZE", 5),
            sync_batch_size=_env_int("SYNC_BATCH_SIZE", 50),
            sync_interval_ms=_env_int("SYNC_INTERVAL_MS", 30_000),
            sync_conflict_resolution=os.getenv("SYNC_CONFLICT_RESOLUTION", "server"),
            sync_user_id=os.getenv("SYNC_USER_ID", "local_user"),
        )
