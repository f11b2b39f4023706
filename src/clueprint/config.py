"""Application configuration with environment variable support."""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Priority: ENV > .env.local > .env > defaults
    Every variable is read with the CLUEPRINT_ prefix (e.g. CLUEPRINT_PORT).
    """

    model_config = SettingsConfigDict(
        env_prefix="CLUEPRINT_",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Service configuration
    PROJECT_NAME: str = "Clueprint"
    DEBUG: bool = False
    HOST: str = "localhost"
    PORT: int = 7007
    LOG_LEVEL: str = "INFO"

    # Security
    ALLOWED_ORIGINS: List[str] = ["chrome-extension://"]

    # Capture toggles
    CAPTURE_CONSOLE: bool = True
    CAPTURE_NETWORK: bool = True
    INCLUDE_SCREENSHOTS: bool = True

    # Buffers
    MAX_CONSOLE_ENTRIES: int = 50
    MAX_NETWORK_ENTRIES: int = 50
    ACTIVITY_WINDOW_SECONDS: float = 30.0
    ACTIVITY_SWEEP_SECONDS: float = 5.0
    ACTIVITY_MAX_EVENTS: int = 5000   # Safety valve for high-frequency events

    # Snapshots
    MAX_SNAPSHOTS: int = 20

    # Requests to the extension
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Diagnosis windows (milliseconds)
    CAPTURE_WINDOW_MS: int = 5000
    FLOW_CONSEQUENCE_WINDOW_MS: int = 2000

    # Selections older than this get a staleness warning (seconds)
    SELECTION_STALE_SECONDS: int = 60

    # WebSocket keepalive configuration
    WS_PING_INTERVAL: int = 30          # Application ping interval (seconds)


# Global settings instance
settings = Settings()
