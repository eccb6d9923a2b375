"""
Logging configuration for the Telegram bridge.
"""

import logging
import os
import sys


def setup_logging(level: str | None = None):
    """Setup logging with proper format and handlers."""

    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()

    logger = logging.getLogger("telegram_bot")
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger

# Global logger instance
bot_logger = setup_logging()
