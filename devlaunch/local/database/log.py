import time
import sqlite3
import logging
from pathlib import Path
from collections import namedtuple
from typing import Any, Dict, List, Optional
from devlaunch.local.database.base import BaseDBManager

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'module', 'message'])
log = logging.getLogger(__name__)

_COLUMNS = ("timestamp", "level", "module", "funcName", "lineno", "message")


class LogDBManager(BaseDBManager):
    """
    The persistent log store.

    Supervisor records are stored under their Python module; captured child
    output is stored under its process key (e.g. `upsend`) so that the console
    can tail one app at a time.
    """

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    def initialize_database(self) -> None:
        """Creates the logs table and its module index when missing."""
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    message TEXT
                )
            ''')
            self.execute("CREATE INDEX IF NOT EXISTS idx_logs_module ON logs (module)")
        except sqlite3.Error as e:
            log.critical(f"Could not create the log table in '{self.db_path}': {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Writes buffered records in one transaction.

        :param log_entries: Dicts keyed by timestamp, level, module, funcName, lineno and message.
        """
        if not log_entries:
            return
        placeholders = ", ".join("?" for _ in _COLUMNS)
        self.execute_many(
            f"INSERT INTO logs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            [tuple(entry[column] for column in _COLUMNS) for entry in log_entries],
        )

    def fetch_last_entries(self, limit: int, module: Optional[str] = None, include_debug: bool = True) -> List[LogEntry]:
        """
        Returns the newest records, oldest first, formatted for the console.

        :param limit: The maximum number of records.
        :param module: Only return records of this module or process key.
        :param include_debug: If False, DEBUG records are skipped.
        """
        clauses, params = [], []
        if module:
            clauses.append("module = ?")
            params.append(module)
        if not include_debug:
            clauses.append("level != 'DEBUG'")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            rows = self.fetch_all(
                f"SELECT timestamp, level, module, message FROM logs {where} ORDER BY id DESC LIMIT ?",
                (*params, limit)
            )
        except sqlite3.Error:
            return []

        entries = []
        for row in reversed(rows):
            stamp = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(row['timestamp']))
            entries.append(LogEntry(
                timestamp=row['timestamp'], level=row['level'], module=row['module'],
                message=f"{stamp} - {row['level']:<8} - [{row['module']}] - {row['message']}"
            ))
        return entries
