import time
import logging
from pathlib import Path
from typing import List, Optional
from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import Ecosystem, EcosystemError, default_ecosystem, load_ecosystem
from devlaunch.local.supervisor import ProcessManager
from devlaunch.local.supervisor.config_utils import check_configuration
from devlaunch.local.console.handler import (
    display_status, handle_config_command, handle_convert_command, handle_logs_command,
    handle_show_command, toggle_verbose_logging, print_help
)

log = logging.getLogger(__name__)

# Set by the --file option of the console.
ecosystem_path: Optional[Path] = None


def load_current_ecosystem() -> Ecosystem:
    """
    Loads the ecosystem file selected for this console session.

    Falls back to the built-in upsend app when no file exists at the default location.
    """
    path = ecosystem_path or config.ECOSYSTEM_FILE
    if ecosystem_path is None and not path.exists():
        log.warning(f"No ecosystem file at '{path}'. Using the built-in upsend app.")
        return default_ecosystem()
    return load_ecosystem(path)


def _start(args: List[str]) -> None:
    foreground = "--foreground" in args or "-f" in args
    manager = ProcessManager(load_current_ecosystem(), foreground=foreground)
    if not manager.start_all(config.VERBOSE_LOGGING) or not foreground:
        return

    print("Supervising in the foreground. Press Ctrl+C to stop.")
    try:
        manager.supervision_loop()
    except KeyboardInterrupt:
        log.info("Interrupted by user.")
    finally:
        manager.stop_all()


def _stop() -> None:
    ProcessManager(load_current_ecosystem()).stop_all()


def _restart(args: List[str]) -> None:
    log.info("Stopping apps...")
    _stop()
    time.sleep(1)
    log.info("Starting apps...")
    _start(args)


def _check_config() -> bool:
    manager = ProcessManager(load_current_ecosystem())
    ok = check_configuration(manager.ecosystem, manager.base_dir)
    print("Configuration OK." if ok else "Configuration has errors, see the log above.")
    return ok


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'show').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "start": lambda: _start(args),
        "stop": _stop,
        "restart": lambda: _restart(args),
        "status": lambda: display_status(ProcessManager(load_current_ecosystem())),
        "show": lambda: handle_show_command(load_current_ecosystem(), args),
        "convert": lambda: handle_convert_command(load_current_ecosystem(), args),
        "check-config": _check_config,
        "config": lambda: handle_config_command(args),
        "logs": lambda: handle_logs_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        return True

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    try:
        command_map[command]()
    except EcosystemError as e:
        log.error(f"Ecosystem file error: {e}")
    return False
