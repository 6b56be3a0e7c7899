import sys
import logging
import threading
from pathlib import Path
from typing import List, Optional

# Basic console logger for messages BEFORE full setup is complete.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import devlaunch.local.console as console
from devlaunch.local.console import process as console_process
from devlaunch.log.setup import setup_logging
from devlaunch.local.supervisor import ProcessManager
from devlaunch.local.ecosystem import EcosystemError

CONSOLE_LOCK = threading.Lock()


def _pop_global_options(args: List[str]) -> bool:
    """
    Removes `--verbose` and `--file <path>` from args in place.

    :return: True if verbose output was requested.
    """
    verbose = False
    if "--verbose" in args:
        args.remove("--verbose")
        verbose = True
    if "--file" in args:
        i = args.index("--file")
        if i + 1 >= len(args):
            raise SystemExit("--file requires a path")
        console_process.ecosystem_path = Path(args[i + 1])
        del args[i:i + 2]
    return verbose


def main(argv: Optional[List[str]] = None) -> None:
    """The main entry point for the console application."""
    args = list(sys.argv[1:] if argv is None else argv)

    setup_logging(logging.INFO)
    if _pop_global_options(args):
        console.toggle_verbose_logging()

    # Non-interactive mode for one-off commands
    if args:
        command, args = args[0].lower(), args[1:]
        console.execute_command(command, args)
        return

    print("--- devlaunch Management Console ---")
    print("Type 'help' for a list of commands.")

    with CONSOLE_LOCK:
        try:
            running = bool(ProcessManager(console_process.load_current_ecosystem()).get_pid_info())
        except EcosystemError as e:
            log.error(f"Ecosystem file error: {e}")
            running = False
    print(f"Apps are currently {'Running' if running else 'Stopped'}.")

    while True:
        try:
            # The input prompt must be outside the lock to not block background threads
            command_line_str = input("> ")
            with CONSOLE_LOCK:
                if not command_line_str.strip():
                    continue
                command_line = command_line_str.strip().split()
                command, args = command_line[0].lower(), command_line[1:]
                log.debug(f"Received command: {command}, args: {args}")

                if console.execute_command(command, args):
                    break

        except (KeyboardInterrupt, EOFError):
            with CONSOLE_LOCK:
                log.warning("\nExiting console.")
                break
        except Exception as e:
            with CONSOLE_LOCK:
                log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)


if __name__ == "__main__":
    main()
