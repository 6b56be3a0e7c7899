import os
import psutil
import logging
from typing import TYPE_CHECKING, Iterable, List, Set
from devlaunch.local.config import effective_settings as config
from devlaunch.local.supervisor import persistence

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


def _with_children(parents: Iterable[psutil.Process]) -> Set[psutil.Process]:
    """Returns the given processes plus all of their descendants."""
    all_procs: Set[psutil.Process] = set(parents)
    for proc in list(all_procs):
        try:
            all_procs.update(proc.children(recursive=True))
        except psutil.NoSuchProcess:
            log.warning(f"Process {proc.pid} no longer exists, skipping children retrieval.")
            continue
    return all_procs


def identify_processes_to_stop(manager: "ProcessManager", is_cleanup_after_failure: bool) -> Set[psutil.Process]:
    """
    Identifies all app processes and their children that need to be stopped.

    The supervisor process is not included; see `stop_supervisor`.

    :param manager: The ProcessManager instance.
    :param is_cleanup_after_failure: If True, uses internal state instead of PID file.
    :return: A set of psutil.Process objects to be stopped.
    """
    parent_procs: Set[psutil.Process] = set()
    if is_cleanup_after_failure or manager.foreground:
        with manager.lock:
            parent_procs = {p for p in manager.running_procs.values() if p.is_running()}
        if is_cleanup_after_failure:
            log.warning("Cleaning up processes after a startup failure.")
    else:
        pid_info = persistence.get_pid_info(manager) or {}
        for key, pid in pid_info.items():
            if key == persistence.SUPERVISOR_KEY or pid == os.getpid():
                continue
            try:
                if psutil.pid_exists(pid):
                    parent_procs.add(psutil.Process(pid))
            except psutil.NoSuchProcess:
                continue

    return _with_children(parent_procs)


def stop_supervisor(manager: "ProcessManager", timeout: float) -> None:
    """
    Terminates the detached supervisor process first, so it cannot restart
    apps while they are being stopped.
    """
    pid_info = persistence.get_pid_info(manager) or {}
    pid = pid_info.get(persistence.SUPERVISOR_KEY)
    if not pid or pid == os.getpid() or not psutil.pid_exists(pid):
        return
    try:
        proc = psutil.Process(pid)
        log.info(f"Stopping supervisor process (PID {pid})...")
        terminate_processes({proc}, timeout)
    except psutil.NoSuchProcess:
        pass


def cleanup_shutdown_files() -> None:
    """Removes the PID file and the shutdown signal file."""
    config.PID_FILE_PATH.unlink(missing_ok=True)
    config.SHUTDOWN_SIGNAL_PATH.unlink(missing_ok=True)
    log.debug("Cleaned up PID and signal files.")


def _terminate(processes: Iterable[psutil.Process]) -> None:
    """Sends SIGTERM to all processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping termination.")
            continue


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping forceful kill.")
            continue


def terminate_processes(processes: Set[psutil.Process], timeout: float) -> None:
    """
    Terminates the given processes, waits up to `timeout` seconds and kills survivors.

    :param processes: A set of psutil.Process objects.
    :param timeout: Seconds to wait after SIGTERM.
    """
    _terminate(processes)

    procs_list = list(processes)
    try:
        _, alive = psutil.wait_procs(procs_list, timeout=timeout)
    except psutil.TimeoutExpired:
        alive = procs_list
    except psutil.NoSuchProcess:
        alive = []

    _forceful_kill(alive)


def graceful_shutdown_sequence(processes: Set[psutil.Process], timeout: float) -> None:
    """
    Runs the full graceful shutdown sequence for the given processes.

    :param processes: A set of psutil.Process objects to shut down.
    :param timeout: Seconds to wait before force-killing.
    """
    terminate_processes(processes, timeout)
    cleanup_shutdown_files()
