"""
Logging configuration for the PDF Forge service
"""

import logging
import logging.config
import os
import sys
from typing import Dict, Optional

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-logger level overrides
LOGGER_LEVELS: Dict[str, str] = {
    "pdf_forge.services.converter": "DEBUG",
    "pdf_forge.routers": "DEBUG",
    "playwright": "WARNING",
    "httpx": "WARNING",
    "uvicorn.access": "WARNING",  # request lines come from the request_logging middleware
}


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure console logging, plus a rotating file when ``log_file`` is set.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path. If None, logs only to console
    """
    log_level = log_level.upper()

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "console",
            "stream": sys.stdout,
        }
    }
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "file",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }

    handler_names = list(handlers)
    loggers = {
        "": {"level": log_level, "handlers": handler_names, "propagate": False},
    }
    for name, level in LOGGER_LEVELS.items():
        loggers[name] = {"level": level, "handlers": handler_names, "propagate": False}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": CONSOLE_FORMAT, "datefmt": DATE_FORMAT},
            "file": {"format": FILE_FORMAT, "datefmt": DATE_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    })

    logging.getLogger(__name__).info(f"Logging configured - Level: {log_level}, File: {log_file or 'Console only'}")
