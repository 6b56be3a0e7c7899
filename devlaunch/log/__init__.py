"""
Logging module for the application.
This module provides functionality to set up console, SQLite and Loki logging.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
