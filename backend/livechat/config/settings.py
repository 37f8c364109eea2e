"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "PureTrust Live Chat"
    app_version: str = "1.0.0"
    debug: bool = True

    # Persistence gateway
    gateway_backend: str = "local"  # local, supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_schema: str = "public"

    # Storage
    local_storage_path: str = "./data"
    public_base_url: str = "http://localhost:8000"
    attachments_bucket: str = "chat-files"
    attachment_cache_control: str = "3600"

    # Realtime change feed
    realtime_heartbeat_interval: float = 25.0  # seconds
    realtime_join_timeout: float = 10.0  # seconds

    # Chat behaviour
    session_poll_interval: float = 5.0  # admin session list refresh, seconds
    default_admin_name: str = "Admin"
    notification_volume: float = 0.3

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/livechat.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
