"""
Configuration for the tablecat server.

All configuration is done via environment variables (prefix
TABLECAT_SERVER_). Uses pydantic-settings for loading and validation.

Invariants:
    - All settings have sensible defaults for local development

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class ServerSettings(BaseSettings):
    """Server configuration loaded from environment."""

    # Bind address
    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=8181, description="HTTP bind port")

    # Base location for tables created without an explicit location
    warehouse: str = Field(default="memory://warehouse", description="Warehouse location")

    # Observability
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log format")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "TABLECAT_SERVER_"}
