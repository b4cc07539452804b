"""
Utils Module
Logging setup and exception hierarchy.
"""
from .logger import setup_logger, get_logger, setup_package_logging
from .exceptions import (
    LongformError,
    ConfigurationError,
    ScraperError,
    SearchError,
    LLMError,
    StoreError,
    StoreUnavailableError,
    JobNotFoundError,
    InvalidProgressTransition,
    StageError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "setup_package_logging",
    "LongformError",
    "ConfigurationError",
    "ScraperError",
    "SearchError",
    "LLMError",
    "StoreError",
    "StoreUnavailableError",
    "JobNotFoundError",
    "InvalidProgressTransition",
    "StageError",
]
