"""Utility modules for sparkcloud."""

from sparkcloud.utils.logging import get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
]
