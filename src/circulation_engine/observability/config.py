"""Configuration for Logfire observability."""

import os

from pydantic import BaseModel, Field


class ObservabilityConfig(BaseModel):
    """Configuration for Logfire observability."""

    # Connection
    token: str = Field(default_factory=lambda: os.getenv("LOGFIRE_TOKEN", ""))
    service_name: str = "circulation-engine"
    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # Behavior
    enabled: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_ENABLED", "true").lower() == "true"
    )
    console_output: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_CONSOLE", "false").lower() == "true"
    )
    send_to_logfire: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_SEND", "false").lower() == "true"
    )


class ProductionConfig(ObservabilityConfig):
    """Production-specific configuration."""

    console_output: bool = False
    send_to_logfire: bool = True


class DevelopmentConfig(ObservabilityConfig):
    """Development-specific configuration."""

    console_output: bool = True
    send_to_logfire: bool = False  # No token required locally


def get_environment_config() -> ObservabilityConfig:
    """Get configuration based on environment."""
    env = os.getenv("ENVIRONMENT", "development")

    if env == "production":
        return ProductionConfig()
    if env == "development":
        return DevelopmentConfig()
    return ObservabilityConfig()
