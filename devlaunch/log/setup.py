import logging
import sys

from devlaunch.local.config import effective_settings as config
from devlaunch.log.handler import SQLiteHandler, LokiHandler
from devlaunch.log.handler.sql import CHILD_PREFIX as CHILD_LOGGER_PREFIX


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw child process output."""

    def __init__(self) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')

    def format(self, record):
        # Child output is already a complete line, prefix it with its process key only.
        if record.name.startswith(CHILD_LOGGER_PREFIX):
            return f"[{record.name[len(CHILD_LOGGER_PREFIX):]}] {record.getMessage()}"
        return super().format(record)


def setup_logging(console_level: int = logging.INFO, persist: bool = True) -> None:
    """
    Configures the root logger for the application.
    This sets up handlers for console, SQLite, and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param persist: If False, only the console handler is installed.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    #* --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    if not persist:
        return

    #* --- SQLite Handler (always enabled for all levels) ---
    try:
        config.LOG_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        sqlite_handler = SQLiteHandler(db_path=config.LOG_DB_PATH)
        sqlite_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(sqlite_handler)
    except Exception as e:
        root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")

    #* --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
