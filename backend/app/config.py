"""
Configuration management for Streamrelay.
"""
from functools import lru_cache
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
from pathlib import Path
from cryptography.fernet import Fernet, InvalidToken
import base64
import os
import logging

from app.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_TASK_TTL_SECONDS

logger = logging.getLogger(__name__)


class TwitchConfig(BaseModel):
    """Twitch application credentials."""
    client_id: str = ""
    client_secret: str = ""
    webhook_secret: str = Field(
        "",
        description="Shared secret used to sign EventSub webhook deliveries (10-100 chars)"
    )


class ServerConfig(BaseModel):
    """Public server settings."""
    webhook_url: str = Field(
        "",
        description="Public base URL Twitch calls back to (e.g. https://example.com)"
    )

    @property
    def eventsub_callback(self) -> str:
        return f"{self.webhook_url.rstrip('/')}/webhooks/twitch"


class DiscordConfig(BaseModel):
    """Discord bot configuration (optional)."""
    bot_token: Optional[str] = None


class TelegramConfig(BaseModel):
    """Telegram bot configuration (optional)."""
    bot_token: Optional[str] = None


class NotificationRetryConfig(BaseModel):
    """Durable retry queue configuration."""
    enabled: bool = Field(True, description="Queue retryable delivery failures")
    initial_backoff_seconds: int = Field(30, ge=1, description="Delay before the first retry")
    max_backoff_seconds: int = Field(3600, ge=1, description="Upper bound of the retry delay")
    poll_interval_seconds: int = Field(5, ge=1, description="Worker poll interval")
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1, description="Attempts before a task is dead-lettered")
    worker_concurrency: int = Field(10, ge=1, description="Tasks claimed and processed per cycle")
    stale_processing_seconds: int = Field(
        600,
        ge=30,
        description="A task stuck in 'processing' longer than this is reclaimed"
    )
    default_ttl_seconds: int = DEFAULT_TASK_TTL_SECONDS
    stream_online_ttl_seconds: int = DEFAULT_TASK_TTL_SECONDS
    title_change_ttl_seconds: int = DEFAULT_TASK_TTL_SECONDS
    category_change_ttl_seconds: int = DEFAULT_TASK_TTL_SECONDS
    reward_redemption_ttl_seconds: int = DEFAULT_TASK_TTL_SECONDS

    def ttl_for(self, notification_type: str) -> int:
        """TTL for a notification type, falling back to the default TTL."""
        return getattr(self, f"{notification_type}_ttl_seconds", self.default_ttl_seconds)


class SyncConfig(BaseModel):
    """Periodic reconciliation intervals."""
    eventsub_interval_seconds: int = Field(3600, ge=60, description="EventSub reconciliation interval")
    calendar_interval_seconds: int = Field(3600, ge=60, description="Calendar sync interval")


class HistoryConfig(BaseModel):
    """Historical data configuration."""
    retention_days: int = Field(30, ge=1, le=365, description="Days to keep audit rows and finished queue tasks")


class Settings(BaseSettings):
    """Application settings loaded from environment and .env file."""

    # Application
    app_name: str = "Streamrelay"
    app_version: str = Field(default_factory=lambda: __import__('app').__version__)
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Database (SQLite for single-container deployment)
    database_url: str = Field(
        "sqlite+aiosqlite:////data/streamrelay.db",
        description="Database connection URL (SQLite embedded)"
    )
    data_dir: Path = Field(Path("/data"), description="Logs and generated secrets live here")

    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    notification_retry: NotificationRetryConfig = Field(default_factory=NotificationRetryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        env_nested_delimiter = "__"


# Global settings instance
settings = Settings()


def _atomic_write_file(file_path: Path, content: bytes) -> bool:
    """
    Atomically write content to a file using a temporary file and rename.

    Returns:
        True if successful, False otherwise
    """
    import tempfile
    temp_file = None
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=file_path.parent)
        temp_file = Path(temp_path)
        os.write(fd, content)
        os.close(fd)

        temp_file.chmod(0o600)
        temp_file.rename(file_path)
        return True
    except OSError as e:
        logger.warning(f"Failed to atomically write {file_path}: {e}")
        if temp_file and temp_file.exists():
            temp_file.unlink(missing_ok=True)
        return False


def _is_valid_fernet_key(key: bytes) -> bool:
    """Fernet keys are 32 url-safe base64-encoded bytes."""
    try:
        return len(base64.urlsafe_b64decode(key)) == 32
    except (ValueError, TypeError):
        return False


def get_encryption_key() -> bytes:
    """
    Get or create the key used to encrypt stored OAuth tokens.

    Priority order:
    1. CONFIG_ENCRYPTION_KEY environment variable (validated)
    2. Stored key in <data_dir>/.encryption_key (validated)
    3. Generate new key and save to file (atomic write)
    """
    key_env = os.getenv("CONFIG_ENCRYPTION_KEY")
    if key_env:
        if _is_valid_fernet_key(key_env.encode()):
            return key_env.encode()
        logger.warning("CONFIG_ENCRYPTION_KEY from environment is invalid, trying file")

    key_file = settings.data_dir / ".encryption_key"
    if key_file.exists():
        try:
            stored_key = key_file.read_bytes().strip()
            if _is_valid_fernet_key(stored_key):
                return stored_key
            logger.warning("Stored encryption key is invalid, regenerating")
        except OSError as e:
            logger.warning(f"Failed to read encryption key file: {e}")

    new_key = Fernet.generate_key()
    if _atomic_write_file(key_file, new_key):
        logger.info(f"Generated new encryption key and saved to {key_file}")
    else:
        logger.warning("Could not persist encryption key - stored tokens will be unreadable after restart")
    return new_key


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    return Fernet(get_encryption_key())


def encrypt_value(value: str) -> str:
    """Encrypt a sensitive value for storage."""
    return get_fernet().encrypt(value.encode()).decode()


def decrypt_value(encrypted: str) -> str:
    """Decrypt a stored value. Raises ValueError when the key does not match."""
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Stored value cannot be decrypted with the current key") from e
