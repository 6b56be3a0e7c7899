import time
import psutil
import logging
from collections import deque
from pathlib import Path
from typing import List
from devlaunch.local.config import effective_settings as config
from devlaunch.local.database import LogDBManager
from devlaunch.local.ecosystem import Ecosystem, dump_ecosystem, save_ecosystem
from devlaunch.local.supervisor import ProcessManager
from devlaunch.local.supervisor.persistence import SUPERVISOR_KEY
from devlaunch.local.supervisor.startup import is_port_in_use

log = logging.getLogger(__name__)


def _config_show():
    """Displays the current values of all modifiable settings."""
    print("\n--- Current devlaunch Configuration ---")
    print(f"(Overrides file: {config.OVERRIDES_JSON_PATH})")

    for key, value in config.modifiable_values().items():
        print(f"  {key} = {value}")

    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("A restart is required for changes to apply to running apps.")
    print("---------------------------------------\n")

def _config_set(args: List[str]):
    """Sets a configuration setting and persists it to the overrides file."""
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return

    key, value_str = args[0].upper(), " ".join(args[1:])
    success, message = config.update_setting(key, value_str)
    if success:
        print(message)
    else:
        print(f"Error: {message}")

def _config_help():
    """Displays help for the config command."""
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting. Requires a restart to apply fully.")
    print("  config help                - Show this help message.")
    print("Use 'check-config' to validate the apps of the ecosystem file.")

def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")

def _process_line(label: str, pid: int) -> str:
    """Formats one status line for a PID, including resource usage when alive."""
    try:
        p = psutil.Process(pid)
        if p.status() == psutil.STATUS_ZOMBIE:
            return f"  - {label:<25} : PID {pid:<8} | Status: STOPPED (Zombie)"
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        uptime = time.strftime('%H:%M:%S', time.gmtime(time.time() - p.create_time()))
        return (
            f"  - {label:<25} : PID {pid:<8} | Status: {p.status().upper()} | "
            f"CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB | Up: {uptime}"
        )
    except psutil.NoSuchProcess:
        return f"  - {label:<25} : PID {pid:<8} | Status: STOPPED (Stale PID)"
    except psutil.AccessDenied:
        return f"  - {label:<25} : PID {pid:<8} | Status: RUNNING (Access Denied)"

def display_status(manager: ProcessManager) -> None:
    """Checks and displays the current status of all app processes, including resource usage."""
    pids = manager.get_pid_info()
    if not pids:
        print("\nApps are STOPPED (No PID file found).\n")
        return

    print("\n--- App Status ---")
    all_stale = True
    for spec in manager.ecosystem:
        for key in spec.process_keys():
            pid = pids.get(key)
            if pid is None:
                print(f"  - {key:<25} : not running")
                continue
            line = _process_line(key, pid)
            all_stale = all_stale and "STOPPED" in line
            print(line)
        if spec.port is not None:
            state = "listening" if is_port_in_use(spec.bind_host, spec.port) else "not listening"
            print(f"    {spec.name} port {spec.port} on {spec.bind_host}: {state}")

    if SUPERVISOR_KEY in pids:
        print(_process_line(SUPERVISOR_KEY, pids[SUPERVISOR_KEY]))

    if all_stale:
        print("\nWARNING: All processes are stopped but a stale PID file exists.")
        print("You should run 'stop' to clean it up before starting again.")
    print("-" * 18 + "\n")

def _tail_file(path: Path, count: int) -> List[str]:
    with path.open("r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]

def handle_logs_command(args: List[str]) -> None:
    """
    Prints recent log output.

    With a process key, prints the tail of that process's output files (daemon
    mode) and its captured lines from the log database (foreground mode).
    Without one, prints the most recent entries of the log database.
    """
    count = config.LOG_HISTORY_COUNT
    key = args[0] if args else None

    if key:
        for suffix in ("out", "error"):
            path = config.LOGS_DIR / f"{key}-{suffix}.log"
            if path.exists():
                print(f"\n--- {path.name} (last {count} lines) ---")
                for line in _tail_file(path, count):
                    print(line)

    if not config.LOG_DB_PATH.exists():
        print("\nNo log database found yet.")
        return

    log_db = LogDBManager(config.LOG_DB_PATH)
    print(f"\n--- Last {count} log entries{f' for {key}' if key else ''} ---")
    for entry in log_db.fetch_last_entries(count, module=key, include_debug=config.VERBOSE_LOGGING):
        print(entry.message)
    print()

def handle_show_command(ecosystem: Ecosystem, args: List[str]) -> None:
    """Prints the loaded ecosystem in the requested format (js, json or yaml)."""
    fmt = args[0].lower() if args else None
    print(dump_ecosystem(ecosystem, fmt), end="")

def handle_convert_command(ecosystem: Ecosystem, args: List[str]) -> None:
    """Writes the loaded ecosystem to a new file, the format taken from its suffix."""
    if not args:
        print("Usage: convert <output-file (.cjs/.js/.json/.yml)>")
        return
    target = save_ecosystem(ecosystem, Path(args[0]))
    print(f"Ecosystem written to '{target}'.")

def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")

def print_help():
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start [--foreground]   - Start all apps. In the foreground, supervise until Ctrl+C.")
    print("  stop                   - Stop all apps gracefully.")
    print("  restart                - Stop and then restart all apps.")
    print("  status                 - Show the current status of all app processes.")
    print("  show [js|json|yaml]    - Print the loaded ecosystem file.")
    print("  convert <file>         - Write the ecosystem to another file/format.")
    print("  logs [process]         - Show recent log entries, optionally for one process.")
    print("  check-config           - Validate commands, paths and ports of all apps.")
    print("  config <cmd>           - Manage configuration. Use 'config help' for more details.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  exit                   - Exit the management console.")
    print("\nGlobal options: --file <path> selects the ecosystem file, --verbose enables DEBUG output.")
    print()
