from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Remote system of record
    REMOTE_API_BASE_URL: str = "http://localhost:5000/api"
    REMOTE_API_TOKEN: str | None = None
    REMOTE_REQUEST_TIMEOUT: float = 30.0

    # Local durable store; in-memory when unset
    REDIS_URL: str | None = None
    REDIS_KEY_PREFIX: str = "attendance"
    REDIS_MAX_CONNECTIONS: int = 10
    REDIS_SOCKET_TIMEOUT: float = 10.0

    # =================================================================
    # IDENTITY MATCHING
    # =================================================================
    MATCH_THRESHOLD: float = 0.7

    # =================================================================
    # SIGNAL DEDUP / BATCHING
    # =================================================================
    DEDUP_WINDOW_SECONDS: float = 5.0
    DEDUP_MAX_ENTRIES: int = 200
    BATCH_MAX_SIZE: int = 50
    BATCH_DELAY_SECONDS: float = 0.5

    # =================================================================
    # SYNC QUEUE RETRY SETTINGS
    # =================================================================
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_INITIAL_DELAY_SECONDS: float = 1.0
    SYNC_BACKOFF_FACTOR: float = 2.0
    SYNC_MAX_DELAY_SECONDS: float = 60.0
    SYNC_PERIODIC_INTERVAL_SECONDS: float = 300.0  # 5 minutes
    SYNC_FAST_FAIL_PERMANENT: bool = False

    SESSION_END_GRACE_SECONDS: float = 1.5

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_redis_config(self) -> dict:
        """Connection pool options for the Redis-backed record store."""
        return {
            "max_connections": self.REDIS_MAX_CONNECTIONS,
            "socket_connect_timeout": self.REDIS_SOCKET_TIMEOUT,
            "socket_timeout": self.REDIS_SOCKET_TIMEOUT,
        }

    def get_matcher_config(self) -> dict:
        return {"threshold": self.MATCH_THRESHOLD}

    def get_batcher_config(self) -> dict:
        return {
            "dedup_window_seconds": self.DEDUP_WINDOW_SECONDS,
            "dedup_max_entries": self.DEDUP_MAX_ENTRIES,
            "max_batch_size": self.BATCH_MAX_SIZE,
            "batch_delay_seconds": self.BATCH_DELAY_SECONDS,
        }

    def get_sync_retry_config(self) -> dict:
        """Get sync queue retry configuration (keyword args for SyncQueue)."""
        return {
            "max_attempts": self.SYNC_MAX_ATTEMPTS,
            "initial_delay_seconds": self.SYNC_INITIAL_DELAY_SECONDS,
            "backoff_factor": self.SYNC_BACKOFF_FACTOR,
            "max_delay_seconds": self.SYNC_MAX_DELAY_SECONDS,
            "fast_fail_permanent": self.SYNC_FAST_FAIL_PERMANENT,
        }

    def get_scheduler_config(self) -> dict:
        """
        Get retry scheduler timing.
        Development shortens the periodic fallback tick so stuck items show up sooner.
        """
        interval = self.SYNC_PERIODIC_INTERVAL_SECONDS
        if self.environment == "development":
            interval = min(interval, 60.0)
        return {
            "interval_seconds": interval,
            "grace_seconds": self.SESSION_END_GRACE_SECONDS,
        }


settings = Settings()
