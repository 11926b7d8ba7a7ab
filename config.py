"""Configuration module for Bloom Journey Notification Service.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for the notification service.

    All settings can be overridden via environment variables.
    Example: export CONTENT_SERVICE_URL="http://content:9000"
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./bloom_notifications.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # API Server Configuration
    API_HOST: str = "0.0.0.0"
    """API server host address"""

    API_PORT: int = 8015
    """API server port"""

    # MCP Server Configuration
    MCP_HOST: str = "127.0.0.1"
    """MCP server host address"""

    MCP_PORT: int = 8016
    """MCP server port for SSE transport (separate from REST API)"""

    MCP_TRANSPORT: str = "sse"
    """MCP transport type: 'stdio' for local, 'sse' for network access"""

    # Logging
    LOG_DIR: str = "logs"
    """Directory of the per-component log files; relative to the package"""

    LOG_LEVEL: str = "INFO"
    """Level of every component logger"""

    # General Configuration
    TIMEZONE: str = "UTC"
    """Timezone used to decide calendar days and reminder clock times"""

    # Scheduler Configuration
    SCHEDULER_CHECK_INTERVAL: float = 60.0
    """Seconds between scheduler ticks in the foreground application"""

    REMINDER_SLOT_GRACE_MINUTES: int = 60
    """How long after its HH:MM time a missed reminder slot still fires"""

    # Content generation collaborator
    CONTENT_SERVICE_URL: str = "http://127.0.0.1:9002"
    """Base URL of the text/audio content-generation service"""

    CONTENT_SERVICE_TIMEOUT: float = 30.0
    """Timeout in seconds for content-generation requests"""

    # Background worker / offline cache
    APP_BASE_URL: str = "http://127.0.0.1:3000"
    """Origin the offline routes are fetched from during install"""

    ASSET_CACHE_NAME: str = "bloom-journey-v1"
    """Current offline asset cache generation"""

    NOTIFICATION_CACHE_NAME: str = "notifications-v1"
    """Current notification cache generation"""

    OFFLINE_ROUTES: List[str] = [
        "/", "/home", "/profile", "/chat", "/timeline", "/meals", "/yoga", "/resources"
    ]
    """Routes guaranteed to be available offline"""

    HOME_ROUTE: str = "/home"
    """Route opened or focused when a notification body is tapped"""

    SYNC_TAG: str = "notification-sync"
    """Background sync tag handled by the worker"""

    CONNECTIVITY_CHECK_INTERVAL: int = 30
    """Seconds between connectivity checks in the worker host"""

    WORKER_INSTALL_ON_STARTUP: bool = True
    """Install and activate the worker when the API server starts"""

    # Audio
    AUDIO_SAMPLE_RATE: int = 44100
    """Sample rate for synthesized notification cues"""

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
