"""
Logging configuration for TradeBridge
Uses loguru for structured, colorized logging
"""

import sys
from loguru import logger

from .config import get_config


def setup_logger(level: str = None):
    """Configure loguru logger with file and console outputs"""
    config = get_config()
    level = level or config.log_level

    # Remove default logger
    logger.remove()

    # Console output with colors
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    # File output
    log_file = config.logs_dir / "tradebridge.log"
    logger.add(
        log_file,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        enqueue=True,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        level=level,
    )

    logger.info("Logger initialized")
    logger.info(f"Log level: {level}")
    logger.info(f"Log file: {log_file}")

    return logger
