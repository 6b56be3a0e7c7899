import os
import time
import socket
import psutil
import logging
import subprocess
from typing import TYPE_CHECKING, Optional
from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import LaunchSpec, LaunchSpecError
from devlaunch.local.supervisor import persistence, process_utils

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)

SUPERVISOR_ENTRY_MODULE = "devlaunch.local.script_entry.supervisor"


def check_if_already_running(manager: "ProcessManager") -> bool:
    """
    Checks if the application is already running based on the PID file.

    :param manager: The ProcessManager instance.
    :return: True if already running, False otherwise.
    """
    pid_info = persistence.get_pid_info(manager)
    if pid_info and any(process_utils.pid_exists(p) for p in pid_info.values()):
        log.error("Apps appear to be running already. Use 'stop' or 'restart'.")
        return True
    return False


def setup_runtime_directories() -> None:
    """Creates the runtime and log directories and clears a stale shutdown signal."""
    config.RUN_DIR.mkdir(parents=True, exist_ok=True)
    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    config.SHUTDOWN_SIGNAL_PATH.unlink(missing_ok=True)


def is_port_in_use(host: str, port: int) -> bool:
    """True if something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return True
    except OSError:
        return False


def check_app_ports(manager: "ProcessManager") -> None:
    """
    Warns about apps whose env PORT disagrees with `--port`, or whose port is taken.
    Port conflicts are left for the launched tool to handle.
    """
    for spec in manager.ecosystem:
        try:
            spec.check_port_consistency()
        except LaunchSpecError as e:
            log.warning(str(e))

        port = spec.port
        if port is not None and is_port_in_use(spec.bind_host, port):
            log.warning(f"Port {port} for app '{spec.name}' is already in use. The app may fail to bind.")


def wait_for_port(spec: LaunchSpec, timeout: float, proc: Optional[psutil.Process] = None) -> bool:
    """
    Waits for an app to start listening on its declared port.

    :param spec: The app to check.
    :param timeout: Seconds to wait.
    :param proc: If given, stop waiting as soon as this process has exited.
    :return: True if the port accepted a connection, False otherwise.
    """
    host, port = spec.bind_host, spec.port
    if port is None:
        return True

    log.info(f"Waiting for '{spec.name}' at {host}:{port}...")
    start_time = time.monotonic()
    while time.monotonic() - start_time < timeout:
        if is_port_in_use(host, port):
            log.info(f"'{spec.name}' is up and listening on port {port}.")
            return True
        if proc is not None and not process_utils.is_alive(proc):
            log.error(f"'{spec.name}' exited before it started listening on port {port}.")
            return False
        time.sleep(0.5)
    log.warning(f"'{spec.name}' did not start listening on port {port} within {timeout} seconds.")
    return False


def start_all_processes(manager: "ProcessManager") -> None:
    """
    Starts every process of every app in ecosystem order.

    :param manager: The ProcessManager instance.
    """
    for spec in manager.ecosystem:
        for key in spec.process_keys():
            process_utils.launch_process(manager, key)


def wait_for_all_ports(manager: "ProcessManager") -> bool:
    """Checks the declared port of each app once all processes are launched."""
    all_up = True
    for spec in manager.ecosystem:
        if spec.port is None:
            continue
        proc = manager.running_procs.get(spec.process_keys()[0])
        all_up = wait_for_port(spec, config.PORT_HEALTH_CHECK_TIMEOUT, proc) and all_up
    return all_up


def spawn_supervisor_process(manager: "ProcessManager") -> psutil.Process:
    """
    Launches the detached supervisor process that monitors and restarts apps
    after the console exits.

    :param manager: The ProcessManager instance.
    :return: The supervisor's psutil.Process.
    """
    args = [config.PYTHON_EXECUTABLE, "-m", SUPERVISOR_ENTRY_MODULE]
    if manager.ecosystem.source is not None:
        args += ["--file", str(manager.ecosystem.source.resolve())]
    else:
        args.append("--builtin")

    # The supervisor must resolve the same runtime directory as this process.
    env = dict(os.environ, DEVLAUNCH_HOME=str(config.BASE_DIR))
    popen_kwargs = process_utils._get_popen_creation_flags()
    out, err = process_utils.open_log_files(persistence.SUPERVISOR_KEY)
    try:
        p = subprocess.Popen(
            args, stdout=out, stderr=err, stdin=subprocess.DEVNULL,
            cwd=str(manager.base_dir), env=env, **popen_kwargs
        )
    finally:
        out.close()
        err.close()

    manager.supervisor_proc = psutil.Process(p.pid)
    log.info(f"Supervisor started with PID: {p.pid}")
    return manager.supervisor_proc


def initialize_supervision(manager: "ProcessManager") -> None:
    """
    Initialize state for the supervision loop.

    A detached supervisor adopts the processes listed in the PID file.

    :param manager: The ProcessManager instance.
    """
    log.info("Supervisor started. Monitoring app processes.")
    manager.shutdown_signal_received.clear()
    if manager.foreground:
        return

    pid_info = persistence.get_pid_info(manager) or {}
    with manager.lock:
        manager.running_procs = {
            key: process_utils.get_process_from_pid(pid)
            for key, pid in pid_info.items()
            if key != persistence.SUPERVISOR_KEY and process_utils.pid_exists(pid)
        }
        for key, proc in manager.running_procs.items():
            manager.started_at[key] = proc.create_time()
    manager.supervisor_proc = psutil.Process()
    # Apps that died between launch and adoption are restarted like crashes.
    for spec in manager.ecosystem:
        for key in spec.process_keys():
            if key not in manager.running_procs and spec.should_autorestart:
                log.warning(f"Process '{key}' is not running at supervisor start.")
                manager.schedule_restart(key, 0)
    log.debug(f"Adopted processes: {', '.join(manager.running_procs) or 'none'}")
