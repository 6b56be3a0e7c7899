import sys
import time
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List
from devlaunch.local.config import effective_settings as config
from devlaunch.local.database import LogDBManager

CHILD_PREFIX = "proc."


def record_location(record: logging.LogRecord):
    """
    Returns (module, funcName, lineno) for a record.

    Child output has no source location: it is filed under the process key,
    with the stream name in place of the function.
    """
    if record.name.startswith(CHILD_PREFIX):
        stream = "stderr" if record.levelno >= logging.ERROR else "stdout"
        return record.name[len(CHILD_PREFIX):], stream, 0
    return record.module, record.funcName, record.lineno


class SQLiteHandler(logging.Handler):
    """
    Buffers records in memory and writes them to the log database from a
    background thread, every LOG_BUFFER_FLUSH_INTERVAL seconds or as soon as
    LOG_BUFFER_SIZE records are pending.
    """

    def __init__(self, db_path: Path):
        super().__init__()
        self.db_path = db_path
        self.logDB = LogDBManager(db_path)
        self.logDB.initialize_database()

        self.buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.write_lock = threading.Lock()
        self.wakeup = threading.Event()
        self.stop_event = threading.Event()

        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.buffer_size = config.LOG_BUFFER_SIZE
        self.size_check_interval = config.LOG_DB_SIZE_CHECK_INTERVAL_SECONDS
        self.max_db_size_mb = config.MAX_LOG_DB_SIZE_MB
        self.next_size_check = time.monotonic()

        self.writer = threading.Thread(target=self._run, daemon=True, name="SQLiteLogWriter")
        self.writer.start()

    def emit(self, record: logging.LogRecord) -> None:
        module, func_name, lineno = record_location(record)
        entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "module": module,
            "funcName": func_name,
            "lineno": lineno,
            "message": record.getMessage(),
        }
        with self.buffer_lock:
            self.buffer.append(entry)
            full = len(self.buffer) >= self.buffer_size
        if full:
            self.wakeup.set()

    def _run(self) -> None:
        while not self.stop_event.is_set():
            self.wakeup.wait(self.flush_interval)
            self.wakeup.clear()
            self.flush()
            if time.monotonic() >= self.next_size_check:
                self.next_size_check = time.monotonic() + self.size_check_interval
                self._check_db_size()

    def flush(self) -> None:
        """Writes every pending record to the database."""
        with self.buffer_lock:
            pending, self.buffer = self.buffer, []
        if not pending:
            return
        with self.write_lock:
            try:
                self.logDB.insert_log_batch(pending)
            except sqlite3.Error as e:
                # Logging from here would feed back into this handler.
                print(f"Dropped {len(pending)} log records, database write failed: {e}", file=sys.stderr)

    def _check_db_size(self) -> None:
        try:
            size_mb = self.db_path.stat().st_size / (1024 * 1024)
        except OSError:
            return
        if size_mb > self.max_db_size_mb:
            logging.getLogger(__name__).warning(
                f"Log database '{self.db_path}' is {size_mb:.2f} MB, above the {self.max_db_size_mb} MB limit."
            )

    def close(self) -> None:
        """Stops the writer thread and writes what is still buffered."""
        self.stop_event.set()
        self.wakeup.set()
        if self.writer.is_alive() and self.writer is not threading.current_thread():
            self.writer.join(timeout=5)
        self.flush()
        super().close()
