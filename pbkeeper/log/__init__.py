"""
Logging module for the supervisor.
This module provides functionality to set up console logging.
"""

from .setup import setup_logging, set_console_level

__all__ = ["setup_logging", "set_console_level"]
