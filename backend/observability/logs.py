"""
Logging setup for the live price service.
Console logging plus a daily-rotated file under LOG_DIR.
"""

import os
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger format and level."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)

def setup_log_rotation(log_dir: str = ".run", filename: str = "backend.log") -> Optional[TimedRotatingFileHandler]:
    """Setup log rotation for backend logs."""
    root_logger = logging.getLogger()
    target = os.path.abspath(os.path.join(log_dir, filename))

    for existing in root_logger.handlers:
        if isinstance(existing, TimedRotatingFileHandler) and existing.baseFilename == target:
            return existing

    try:
        os.makedirs(log_dir, exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=target,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

        logger.info("Log rotation configured (daily, keep 7 days)")
        return handler

    except OSError as e:
        logger.error(f"Failed to setup log rotation: {e}")
        return None
