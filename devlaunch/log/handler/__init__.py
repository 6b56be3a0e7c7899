"""
Logging handlers for the application.
This module provides various logging handlers that can be used to log messages
to different backends.
"""

from .loki import LokiHandler
from .sql import SQLiteHandler

__all__ = ["SQLiteHandler", "LokiHandler"]
