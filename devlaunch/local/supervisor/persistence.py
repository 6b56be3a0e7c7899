import json
import logging
from typing import TYPE_CHECKING, Dict, Optional
from devlaunch.local.config import effective_settings as config

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)

SUPERVISOR_KEY = "supervisor"


def get_pid_info(manager: "ProcessManager" = None) -> Optional[Dict[str, int]]:
    """
    Reads the PID file from disk and returns its contents.
    
    :param manager: The ProcessManager instance, updated with the PIDs read.
    :return: A dictionary of PIDs if the file exists and is valid, else None.
    """
    if not config.PID_FILE_PATH.exists():
        return None
    try:
        with config.PID_FILE_PATH.open("r") as f:
            pids = json.load(f)
        if not isinstance(pids, dict) or not all(isinstance(pid, int) for pid in pids.values()):
            log.warning(f"Removing malformed PID file '{config.PID_FILE_PATH}'.")
            config.PID_FILE_PATH.unlink()
            return None
        if manager is not None:
            manager.pids_on_disk = pids
        return pids
    except (json.JSONDecodeError, IOError):
        config.PID_FILE_PATH.unlink(missing_ok=True)
        return None

def write_pid_file(manager: "ProcessManager") -> None:
    """
    Atomically writes the current running process PIDs to the PID file.
    
    :param manager: The ProcessManager instance.
    """
    with manager.lock:
        pid_dict = {key: proc.pid for key, proc in manager.running_procs.items()}
    if manager.supervisor_proc is not None:
        pid_dict[SUPERVISOR_KEY] = manager.supervisor_proc.pid

    config.PID_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
    temp_pid_path = config.PID_FILE_PATH.with_suffix(".tmp")
    try:
        with temp_pid_path.open("w") as f:
            json.dump(pid_dict, f, indent=4)
        temp_pid_path.replace(config.PID_FILE_PATH)
        manager.pids_on_disk = pid_dict
    except (IOError, OSError) as e:
        log.error(f"Failed to write PID file: {e}", exc_info=True)
    finally:
        temp_pid_path.unlink(missing_ok=True)

def check_for_shutdown_signal() -> bool:
    """Checks if the shutdown signal file exists."""
    if config.SHUTDOWN_SIGNAL_PATH.exists():
        log.info("Shutdown signal file detected. Exiting supervisor loop.")
        return True
    return False
