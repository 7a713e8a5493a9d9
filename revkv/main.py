"""
revkv - Main entry point.

This module starts the HTTP gateway on top of a configured backend.

Usage:
    python -m revkv.main

Configuration is entirely via environment variables.
See config.py and gateway/config.py for all available settings.

Invariants:
    - The backend is opened (and its schema applied) before serving
    - The backend is closed when the gateway shuts down
"""

from __future__ import annotations

import logging

import json_log_formatter
import uvicorn

from .config import ServerConfig
from .gateway import Settings, create_app

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
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


def main() -> None:
    """Load configuration, configure logging and serve the gateway."""
    config = ServerConfig.from_env()
    setup_logging(config)
    config.log_config()

    settings = Settings()
    app = create_app(config=config, settings=settings)

    logger.info(
        "Starting revkv gateway",
        extra={"host": settings.host, "port": settings.port},
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
