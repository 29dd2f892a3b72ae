"""
Logging Configuration Module.

This module provides centralized logging configuration for the ServerPilot-AI project.

Features:
- Configurable log levels per module
- Console and file logging
- Simple, detailed and JSON-like line formats
"""

import logging
import os
from pathlib import Path
from typing import Optional


def _get_logging_config():
    """Get logging configuration from the settings model.

    Settings are imported lazily to avoid a circular import while the server
    package is being initialised.
    """
    try:
        from serverpilot_ai.server.core.config import settings

        return {
            "log_level": settings.log_level.upper(),
            "log_format": settings.log_format,
            "log_file_dir": settings.log_file_dir,
            "enable_file_logging": settings.enable_file_logging,
        }
    except Exception:
        # Fallback to environment variables if settings cannot be built
        return {
            "log_level": os.getenv("SERVERPILOT_AI_LOG_LEVEL", "INFO").upper(),
            "log_format": os.getenv("SERVERPILOT_AI_LOG_FORMAT", "detailed"),
            "log_file_dir": os.getenv("SERVERPILOT_AI_LOG_FILE_DIR", "logs"),
            "enable_file_logging": os.getenv("SERVERPILOT_AI_ENABLE_FILE_LOGGING", "false").lower()
            in ("true", "1", "yes"),
        }


SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

FORMATS = {
    "simple": SIMPLE_FORMAT,
    "detailed": DETAILED_FORMAT,
    "json": JSON_FORMAT,
}

LOG_FILE_NAME = "serverpilot_ai.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    # Core modules
    "serverpilot_ai.agent_core": "DEBUG",
    "serverpilot_ai.agent_core.abstraction": "DEBUG",
    "serverpilot_ai.agent_core.planning": "DEBUG",
    "serverpilot_ai.agent_core.policy": "INFO",
    "serverpilot_ai.agent_core.runtime": "DEBUG",
    "serverpilot_ai.agent_core.service": "DEBUG",
    "serverpilot_ai.remote": "DEBUG",
    # Server modules
    "serverpilot_ai.server": "INFO",
    "serverpilot_ai.server.api": "DEBUG",
    "serverpilot_ai.server.services": "DEBUG",
    # Third-party libraries (reduce noise)
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "asyncio": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: Optional[bool] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Override default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override default format (simple, detailed, json)
        enable_file: Override whether the rotating log file under ``log_file_dir`` is written
    """
    config = _get_logging_config()
    level = (log_level or config["log_level"]).upper()
    fmt = log_format or config["log_format"]
    file_logging = config["enable_file_logging"] if enable_file is None else enable_file

    formatter = logging.Formatter(FORMATS.get(fmt, DETAILED_FORMAT), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_logging:
        log_dir = Path(config["log_file_dir"])
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
