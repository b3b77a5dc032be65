"""
Configuration for the tablecat SDK.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Client configuration loaded from environment."""

    # Catalog connection
    catalog_uri: str = Field(default="http://localhost:8181", description="REST catalog base URI")
    request_timeout: float = Field(default=30.0, description="Request timeout seconds")

    # Default warehouse location for new tables
    warehouse: str | None = Field(default=None, description="Warehouse location for new tables")

    model_config = {"env_prefix": "TABLECAT_"}
