"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (users, social links, persistent cache tables)
    database_url: str = "sqlite:///./minefolio.db"

    # Twitch Helix (client credentials flow)
    twitch_client_id: Optional[str] = None
    twitch_client_secret: Optional[str] = None

    # YouTube Data API v3
    youtube_api_key: Optional[str] = None

    # Shared secret for cron-triggered refresh endpoints
    cron_secret: Optional[str] = None

    # Upstream endpoints
    paceman_base_url: str = "https://paceman.gg"
    twitch_api_base_url: str = "https://api.twitch.tv/helix"
    twitch_auth_url: str = "https://id.twitch.tv/oauth2/token"
    youtube_api_base_url: str = "https://www.googleapis.com/youtube/v3"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_retry_attempts: int = 2

    # Cache settings
    memory_cache_max_entries: int = 1000
    memory_cache_cleanup_interval: int = 300
    revalidation_workers: int = 4
    coalesce_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
