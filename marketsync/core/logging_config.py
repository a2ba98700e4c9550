# marketsync/core/logging_config.py
"""
Centralized logging configuration for the application.

Keeps sync and cache logs visible while quieting the HTTP client, database
and scheduler libraries.
"""

import logging
import os


def configure_logging(level: str = None):
    """
    Configure logging for the application.

    - marketsync code: INFO (or whatever LOG_LEVEL says)
    - httpx / httpcore: WARNING only
    - sqlalchemy / asyncpg: WARNING only
    - apscheduler: WARNING only
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    # HTTP clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Database
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger("marketsync").setLevel(numeric_level)
    logging.getLogger("__main__").setLevel(numeric_level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at level: {log_level}")
