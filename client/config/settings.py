from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables.

    Environment variables can come from:
    - .env file (API_BASE_URL, WS_URL, DISASTER_ALERT_TOKEN)
    - System environment

    Defaults point at the local Express backend (port 5000).
    """

    # Environment
    environment: str = "development"

    # REST + WebSocket endpoints
    api_base_url: str = "http://localhost:5000/api"
    ws_url: str = "ws://localhost:5000/ws"
    request_timeout: float = 10.0

    # Bearer token used by the console monitor (optional)
    disaster_alert_token: Optional[str] = None

    # RequestCache
    cache_ttl_seconds: float = 30.0
    cache_retries: int = 2
    cache_retry_delay: float = 1.0

    # Refresh cadence
    poll_interval_seconds: float = 120.0  # 2 minutes
    analytics_refresh_seconds: float = 300.0  # 5 minutes

    # RealtimeChannel reconnect policy (0 attempts = never reconnect)
    ws_reconnect_attempts: int = 0
    ws_reconnect_delay: float = 3.0

    # Page sizes per view
    admin_page_size: int = 100
    map_page_size: int = 100
    feed_page_size: int = 5
    users_page_size: int = 10
    notifications_page_size: int = 50
    my_reports_page_size: int = 20
    comments_page_size: int = 10

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('api_base_url', mode='before')
    @classmethod
    def strip_trailing_slash(cls, v):
        """Endpoints are joined as f"{api_base_url}/reports" """
        if isinstance(v, str):
            return v.rstrip('/')
        return v

    @field_validator('ws_url', mode='before')
    @classmethod
    def check_ws_scheme(cls, v):
        """Only ws:// and wss:// URLs are accepted for the realtime channel"""
        if isinstance(v, str):
            if not v.startswith(('ws://', 'wss://')):
                raise ValueError(f"ws_url must start with ws:// or wss://, got {v!r}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
