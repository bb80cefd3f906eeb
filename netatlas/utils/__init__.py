"""
Utils Module

Shared utilities, helpers, and common functionality.

Components:
    - logger: Logging with daily file names and colorized output
    - exceptions: Custom exception classes
"""

from netatlas.utils.logger import (
    LoggerConfig,
    get_api_logger,
    get_cache_logger,
    get_fallback_logger,
    get_logger,
    setup_logger,
)

__all__ = [
    # Logger utilities
    "LoggerConfig",
    "setup_logger",
    "get_logger",
    "get_api_logger",
    "get_cache_logger",
    "get_fallback_logger",
]
