"""
Configuration settings for the Workflow Engine.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "CallFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Workflow Engine
    DEFAULT_RUN_TIMEOUT: float = 600.0  # Seconds, per run
    DEFAULT_TASK_TIMEOUT: float = 60.0  # Seconds, per capability invocation

    # Events
    LOG_EVENTS: bool = False  # Also write run lifecycle events to the log

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
