from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_RELAY_HUB_URL = "https://hub.2.chatwoot.com"


@dataclass(frozen=True, slots=True)
class PushConfig:
    """Snapshot of the push settings consumed by one dispatch."""

    firebase_project_id: str | None = None
    firebase_credentials: str | None = None
    relay_hub_enabled: bool = True
    relay_hub_url: str = DEFAULT_RELAY_HUB_URL
    installation_identifier: str | None = None
    skip_resolved_conversations: bool = True
    dispatch_timeout_seconds: float = 10.0

    def has_firebase_credentials(self) -> bool:
        return bool(
            self.firebase_project_id
            and self.firebase_project_id.strip()
            and self.firebase_credentials
            and self.firebase_credentials.strip()
        )


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # Firebase (direct provider channel)
    FIREBASE_PROJECT_ID: str | None = None
    FIREBASE_CREDENTIALS: str | None = None

    # Relay hub channel
    ENABLE_PUSH_RELAY_SERVER: bool = True
    PUSH_RELAY_HUB_URL: str = DEFAULT_RELAY_HUB_URL
    INSTALLATION_IDENTIFIER: str | None = None

    # Dispatch policy
    PUSH_SKIP_RESOLVED_CONVERSATIONS: bool = True
    PUSH_DISPATCH_TIMEOUT_SECONDS: float = 10.0
    PUSH_JOB_MAX_ATTEMPTS: int = 3
    PUSH_JOB_BASE_DELAY_SECONDS: float = 2.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def push_config(self) -> PushConfig:
        """Build the immutable push configuration snapshot."""
        return PushConfig(
            firebase_project_id=self.FIREBASE_PROJECT_ID,
            firebase_credentials=self.FIREBASE_CREDENTIALS,
            relay_hub_enabled=self.ENABLE_PUSH_RELAY_SERVER,
            relay_hub_url=self.PUSH_RELAY_HUB_URL.rstrip("/"),
            installation_identifier=self.INSTALLATION_IDENTIFIER,
            skip_resolved_conversations=self.PUSH_SKIP_RESOLVED_CONVERSATIONS,
            dispatch_timeout_seconds=self.PUSH_DISPATCH_TIMEOUT_SECONDS,
        )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
