"""
API layer for the tablecat server.

- http_server: FastAPI REST catalog service
"""

from .http_server import create_app

__all__ = ["create_app"]
