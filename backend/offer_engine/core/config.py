"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Offer Negotiation Engine"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Negotiation rules
    OFFER_TTL_HOURS: int = 24  # Offer validity window from creation
    DEFAULT_MAX_VENDOR_COUNTERS: int = 2  # Strike limit per negotiation thread

    # Expiry sweep
    EXPIRY_SWEEP_ENABLED: bool = True
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60

    # Remote marketplace backend (outbound sync of committed transitions)
    BACKEND_SYNC_ENABLED: bool = False
    BACKEND_BASE_URL: str = "http://localhost:5000/api"
    BACKEND_API_TOKEN: str = ""
    BACKEND_TIMEOUT: float = 10.0  # seconds
    BACKEND_MAX_RETRIES: int = 3
    BACKEND_RETRY_DELAY: float = 1.0  # seconds, base for exponential backoff

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events
    SSE_POLL_INTERVAL: float = 1.0  # seconds between history polls

    # CORS - accepts comma-separated string or list
    # Use str type and parse in validator to avoid JSON parsing issues
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:19006"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),  # project root
            str(Path(__file__).parent.parent.parent / ".env"),  # backend/.env (fallback)
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton instance
settings = Settings()
