import sys
import time
import shutil
import psutil
import logging
import threading
import subprocess
from typing import IO, TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import LaunchSpec

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


#* --- Process Status & Monitoring ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return psutil.pid_exists(pid)

def get_process_from_pid(pid: int) -> psutil.Process:
    """A wrapper for psutil.Process for easy testing/mocking if needed."""
    return psutil.Process(pid)

def is_alive(proc: psutil.Process) -> bool:
    """True if the process exists and is not a zombie."""
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False

def _get_proc_status_string(proc: psutil.Process) -> str:
    """Gets a string representation of a process status."""
    try:
        if proc.status() == psutil.STATUS_ZOMBIE:
            return "zombie"
        return "running"
    except psutil.NoSuchProcess:
        return "stopped"
    except psutil.Error:
        return "unknown"

def _reap(manager: "ProcessManager", key: str) -> Optional[int]:
    """Collects the exit code of a child this process spawned itself."""
    popen = manager.popen_handles.pop(key, None)
    if popen is None:
        return None
    try:
        return popen.wait(timeout=1)
    except subprocess.TimeoutExpired:
        return None

def _handle_failed_process(manager: "ProcessManager", key: str, proc: psutil.Process) -> None:
    """
    Handles an exited process: logs it and schedules a restart if its app asks for one.
    """
    status = _get_proc_status_string(proc)
    with manager.lock:
        # The key may have been stopped or relaunched since it was sampled.
        if manager.running_procs.get(key) is not proc:
            return
        manager.running_procs.pop(key)
        exit_code = _reap(manager, key)

    if manager.shutdown_signal_received.is_set() or config.SHUTDOWN_SIGNAL_PATH.exists():
        log.debug(f"Process '{key}' exited during shutdown.")
        return

    exit_info = f", exit code {exit_code}" if exit_code is not None else ""
    log.warning(f"Detected {status} process: {key} (PID: {proc.pid}{exit_info})")

    try:
        spec, _ = manager.ecosystem.app_for_key(key)
    except KeyError:
        log.warning(f"Process '{key}' is not part of the loaded ecosystem. Not restarting.")
        return

    if not spec.should_autorestart:
        log.info(f"App '{spec.name}' has autorestart disabled. Leaving '{key}' stopped.")
        return

    delay = (spec.restart_delay or 0) / 1000
    manager.schedule_restart(key, delay)

def monitor_processes(manager: "ProcessManager") -> List[str]:
    """
    Checks every tracked process and handles the ones that exited.

    :return: The keys of processes found dead in this pass.
    """
    failed = []
    with manager.lock:
        tracked = list(manager.running_procs.items())
    for key, proc in tracked:
        if not is_alive(proc):
            failed.append(key)
            _handle_failed_process(manager, key, proc)
    return failed

#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}

def resolve_command(command: str, env: Optional[Dict[str, str]] = None) -> str:
    """
    Resolves a command name against PATH.

    On Windows this finds wrappers such as `npx.cmd`. Unresolvable commands are
    returned unchanged so that Popen reports the failure.
    """
    path = env.get("PATH") if env else None
    return shutil.which(command, path=path) or command

def build_argv(spec: LaunchSpec, env: Optional[Dict[str, str]] = None) -> List[str]:
    """Returns the argv list for an app, with its command resolved on PATH."""
    argv = spec.argv()
    argv[0] = resolve_command(argv[0], env)
    return argv

def open_log_files(key: str) -> Tuple[IO[bytes], IO[bytes]]:
    """Opens (append mode) the stdout and stderr log files of a daemonized process."""
    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    out = (config.LOGS_DIR / f"{key}-out.log").open("ab")
    err = (config.LOGS_DIR / f"{key}-error.log").open("ab")
    return out, err

def _read_pipe(pipe, key: str, level: int, line_handler: Optional[Callable] = None):
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{key}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if line_handler:
                line_handler(line)
            else:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {key} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(process: subprocess.Popen, key: str, line_handler: Optional[Callable] = None):
    """Starts background threads to consume and log a process's stdout/stderr."""
    if process.stdout:
        threading.Thread(target=_read_pipe, args=(process.stdout, key, logging.INFO, line_handler), daemon=True, name=f"{key}-stdout").start()
    if process.stderr:
        threading.Thread(target=_read_pipe, args=(process.stderr, key, logging.ERROR), daemon=True, name=f"{key}-stderr").start()

def launch_process(manager: "ProcessManager", key: str) -> subprocess.Popen:
    """
    Launches one process of an app and adds it to the manager's tracking dictionary.

    In foreground mode the output is piped into `proc.<key>` loggers; otherwise
    it is appended to per-process files under the logs directory, so the child
    keeps running after the launching console exits.

    :param manager: The ProcessManager instance.
    :param key: The process key (app name, or `name-<i>` for cluster instances).
    :return: The Popen handle of the new process.
    """
    log.info(f"Starting process: {key}...")
    try:
        spec, instance = manager.ecosystem.app_for_key(key)
        env = spec.child_environment(instance=instance)
        argv = build_argv(spec, env)
        cwd = spec.working_directory(manager.base_dir)
        popen_kwargs = _get_popen_creation_flags()

        if manager.foreground:
            p = subprocess.Popen(
                argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL,
                cwd=str(cwd), env=env, **popen_kwargs
            )
            log_process_output(p, key)
        else:
            out, err = open_log_files(key)
            try:
                p = subprocess.Popen(
                    argv, stdout=out, stderr=err, stdin=subprocess.DEVNULL,
                    cwd=str(cwd), env=env, **popen_kwargs
                )
            finally:
                out.close()
                err.close()

        with manager.lock:
            manager.running_procs[key] = psutil.Process(p.pid)
            manager.popen_handles[key] = p
            manager.started_at[key] = time.time()
        log.info(f"'{key}' started successfully with PID: {p.pid} ({' '.join(argv)})")
        return p
    except Exception as e:
        log.critical(f"Failed to start process '{key}': {e}", exc_info=True)
        raise
