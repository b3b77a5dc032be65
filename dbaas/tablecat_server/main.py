"""
tablecat Server - Main entry point.

This module starts the REST catalog:
- InMemoryCatalog (authoritative table state)
- FastAPI application served by uvicorn

Usage:
    python -m dbaas.tablecat_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Logging is configured before any component starts
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn
from pydantic import ValidationError

from .api import create_app
from .catalog import InMemoryCatalog
from .config import ServerSettings

logger = logging.getLogger(__name__)


def setup_logging(settings: ServerSettings) -> None:
    """Configure logging based on settings.

    Args:
        settings: Server settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        settings = ServerSettings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)

    catalog = InMemoryCatalog(warehouse=settings.warehouse)
    app = create_app(catalog, settings)

    logger.info(f"tablecat catalog listening on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
