import sqlite3
import logging
import threading
from pathlib import Path
from contextlib import closing, contextmanager
from typing import Any, Iterable, Iterator, List, Optional, Sequence

log = logging.getLogger(__name__)


class BaseDBManager:
    """Opens a short-lived SQLite connection per operation."""

    def __init__(self, db_path: Path, lock: Optional[threading.Lock] = None):
        """
        :param db_path: The SQLite database file.
        :param lock: Optional lock held for the lifetime of each connection.
        """
        self.db_path = db_path
        self.lock = lock

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yields a connection with row access by column name; commits on success."""
        if self.lock is not None:
            self.lock.acquire()
        try:
            with closing(sqlite3.connect(self.db_path, timeout=10)) as conn:
                conn.row_factory = sqlite3.Row
                with conn:
                    yield conn
        finally:
            if self.lock is not None:
                self.lock.release()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with self.connection() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            log.error(f"Query on '{self.db_path.name}' failed: {e}")
            raise

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        try:
            with self.connection() as conn:
                conn.executemany(sql, rows)
        except sqlite3.Error as e:
            log.error(f"Batch write to '{self.db_path.name}' failed: {e}")
            raise

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Runs a read query and returns every row."""
        return self.execute(sql, params)
