"""Application configuration."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Web server
    host: str = "0.0.0.0"
    port: int = 8080

    # Optional basic auth
    username: Optional[str] = None
    password: Optional[str] = None

    # SIP provider backing the session
    provider: Literal["none", "loopback"] = "loopback"

    # Session behaviour
    allow_idle_hangup: bool = True
    status_history_size: int = 50

    # Loopback provider
    loopback_event_delay: float = 0.0
    loopback_auto_answer: bool = True
    loopback_reject_password: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "SIPSESSION_",
        "env_file": ".env",
    }

    @property
    def auth_enabled(self) -> bool:
        """Check if basic auth is enabled."""
        return bool(self.username and self.password)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
