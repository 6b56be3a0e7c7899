"""
This module initializes the local database management system.
It exposes the SQLite manager that backs the persistent log store.
"""

from .log import LogDBManager, LogEntry

__all__ = ["LogDBManager", "LogEntry"]
