"""
This module contains the configuration settings for devlaunch.
It defines runtime paths, supervisor timings and logging configuration.
It is used throughout the application to ensure consistent settings and paths.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("DEVLAUNCH_HOME", os.getcwd())).resolve()  # Project being launched
RUN_DIR = BASE_DIR / ".devlaunch"
LOGS_DIR = RUN_DIR / "logs"

#* --- Runtime File Paths ---
ECOSYSTEM_FILE = BASE_DIR / os.getenv("DEVLAUNCH_ECOSYSTEM", "ecosystem.config.cjs")
LOG_DB_PATH = LOGS_DIR / "devlaunch_logs.db"
PID_FILE_PATH = RUN_DIR / "devlaunch.pid"
OVERRIDES_JSON_PATH = RUN_DIR / "overrides.json"
SHUTDOWN_SIGNAL_PATH = RUN_DIR / "shutdown.signal"

#* --- Python Executable Configuration ---
# Used to spawn the detached supervisor process
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)
SUPERVISOR_PROCESS_TITLE = "devlaunch - Supervisor"

#* --- Manager/Supervisor Settings ---
SUPERVISOR_SLEEP_INTERVAL = 2
MAX_RESTART_ATTEMPTS = 3
RESTART_COOLDOWN_PERIOD = 30     # seconds
PORT_HEALTH_CHECK_TIMEOUT = 30   # seconds, wrangler can take a while to bind
GRACEFUL_SHUTDOWN_TIMEOUT = 10   # seconds before force-killing
WATCH_DEBOUNCE_SECONDS = 1.0

#* --- Optional Services ---
# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Application variables ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "SUPERVISOR_SLEEP_INTERVAL", "MAX_RESTART_ATTEMPTS", "RESTART_COOLDOWN_PERIOD",
    "PORT_HEALTH_CHECK_TIMEOUT", "GRACEFUL_SHUTDOWN_TIMEOUT", "WATCH_DEBOUNCE_SECONDS",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
    "MAX_LOG_DB_SIZE_MB", "LOG_DB_SIZE_CHECK_INTERVAL_SECONDS", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
MAX_LOG_DB_SIZE_MB = 100
LOG_DB_SIZE_CHECK_INTERVAL_SECONDS = 12 * 3600 # 12 hours
LOG_HISTORY_COUNT = 50
