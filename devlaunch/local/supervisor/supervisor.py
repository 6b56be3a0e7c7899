import time
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set
from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import Ecosystem
from devlaunch.log.setup import setup_logging
from devlaunch.local.supervisor import persistence, process_utils, shutdown, startup, watcher

log = logging.getLogger(__name__)


class ProcessManager:
    """
    Manages the lifecycle of the processes declared in an ecosystem file.

    In foreground mode the manager owns its children directly and pipes their
    output into the logging system. Otherwise it launches them detached, writes
    their output to files and hands supervision to a separate supervisor process.
    """

    def __init__(self, ecosystem: Ecosystem, foreground: bool = False) -> None:
        """
        Initializes the ProcessManager state.

        :param ecosystem: The apps to manage.
        :param foreground: If True, children are supervised by this process.
        """
        self.ecosystem = ecosystem
        self.foreground = foreground
        self.base_dir: Path = ecosystem.source.resolve().parent if ecosystem.source else config.BASE_DIR

        self.lock = threading.RLock()
        self.pids_on_disk: Dict[str, int] = {}
        self.running_procs: Dict[str, psutil.Process] = {}
        self.popen_handles: Dict[str, subprocess.Popen] = {}
        self.started_at: Dict[str, float] = {}
        self.supervisor_proc: Optional[psutil.Process] = None
        self.observers: List = []

        self.restart_counts: Dict[str, int] = {}
        self.restart_cooldown_timers: Dict[str, float] = {}
        self.pending_restarts: Set[str] = set()
        self.errored: Set[str] = set()

        self.shutdown_signal_received = threading.Event()

    #* --- Restart Policy ---
    def _max_restarts(self, key: str) -> int:
        spec, _ = self.ecosystem.app_for_key(key)
        if spec.max_restarts is not None:
            return spec.max_restarts
        return config.MAX_RESTART_ATTEMPTS

    def schedule_restart(self, key: str, delay: float) -> None:
        """Queues a crashed process for restart once `delay` seconds have passed."""
        with self.lock:
            self.pending_restarts.add(key)
            if delay > 0:
                self.restart_cooldown_timers[key] = time.time() + delay

    def _attempt_restart(self, key: str) -> bool:
        """
        Attempts to restart a single failed process with backoff logic.

        :param key: The process key to restart.
        :return: True if restart was successful, False otherwise.
        """
        if self.restart_cooldown_timers.get(key, 0) > time.time():
            log.debug(f"Process '{key}' is in cooldown. Skipping restart.")
            return False

        restarts = self.restart_counts.get(key, 0)
        max_attempts = self._max_restarts(key)
        if restarts >= max_attempts:
            log.critical(
                f"Process '{key}' has been restarted {restarts} times. "
                "Halting restart attempts."
            )
            with self.lock:
                self.pending_restarts.discard(key)
                self.errored.add(key)
            return False

        log.warning(f"Process '{key}' is down. Restart attempt #{restarts + 1}...")
        self.restart_counts[key] = restarts + 1
        try:
            process_utils.launch_process(self, key)
        except Exception:
            cooldown_period = config.RESTART_COOLDOWN_PERIOD
            self.restart_cooldown_timers[key] = time.time() + cooldown_period
            log.error(f"Failed to restart '{key}'. Cooldown active for {cooldown_period}s.")
            return False

        log.info(f"Process '{key}' restarted successfully.")
        with self.lock:
            self.pending_restarts.discard(key)
            self.restart_cooldown_timers.pop(key, None)
        persistence.write_pid_file(self)
        return True

    def reset_stable_restart_counts(self) -> None:
        """Forgets the restart count of every process that has stayed up for RESTART_COOLDOWN_PERIOD."""
        now = time.time()
        with self.lock:
            stable = [
                key for key in self.restart_counts
                if key in self.running_procs and now - self.started_at.get(key, now) >= config.RESTART_COOLDOWN_PERIOD
            ]
            for key in stable:
                del self.restart_counts[key]
        for key in stable:
            log.debug(f"Process '{key}' is stable again. Restart count reset.")

    def process_pending_restarts(self) -> None:
        """Restarts every queued process whose cooldown has passed."""
        with self.lock:
            pending = sorted(self.pending_restarts)
        for key in pending:
            self._attempt_restart(key)

    #* --- Single App Control ---
    def stop_process(self, key: str, timeout: Optional[float] = None) -> None:
        """
        Stops one process and its children without scheduling a restart.

        :param key: The process key.
        :param timeout: Seconds to wait before killing; defaults to the app's kill_timeout.
        """
        with self.lock:
            proc = self.running_procs.pop(key, None)
            self.pending_restarts.discard(key)
        if proc is None:
            return
        if timeout is None:
            timeout = self.kill_timeout_for(key)
        log.info(f"Stopping process '{key}' (PID {proc.pid})...")
        try:
            procs = {proc, *proc.children(recursive=True)}
        except psutil.NoSuchProcess:
            procs = set()
        shutdown.terminate_processes(procs, timeout)
        with self.lock:
            process_utils._reap(self, key)

    def restart_app(self, name: str) -> None:
        """Stops and relaunches every process of an app. Manual restarts are not counted."""
        spec = self.ecosystem.get(name)
        for key in spec.process_keys():
            self.stop_process(key)
            with self.lock:
                self.errored.discard(key)
            self.restart_counts.pop(key, None)
            process_utils.launch_process(self, key)
        persistence.write_pid_file(self)

    def kill_timeout_for(self, key: str) -> float:
        try:
            spec, _ = self.ecosystem.app_for_key(key)
        except KeyError:
            return config.GRACEFUL_SHUTDOWN_TIMEOUT
        if spec.kill_timeout is not None:
            return spec.kill_timeout / 1000
        return config.GRACEFUL_SHUTDOWN_TIMEOUT

    #* --- Whole Ecosystem ---
    def start_all(self, verbose: bool = False) -> bool:
        """
        Starts all app processes.

        :param verbose: If True, sets console logging to DEBUG level.
        :return: True on successful startup, False on failure.
        """
        if startup.check_if_already_running(self):
            return False

        console_level = logging.DEBUG if verbose else logging.INFO
        setup_logging(console_level)

        log.info("=" * 20 + " Starting Apps " + "=" * 20)
        self.shutdown_signal_received.clear()
        with self.lock:
            self.running_procs.clear()
        start_time = time.time()

        try:
            startup.setup_runtime_directories()
            startup.check_app_ports(self)
            startup.start_all_processes(self)
            # The detached supervisor adopts the apps listed in the PID file.
            persistence.write_pid_file(self)
            if not self.foreground:
                startup.spawn_supervisor_process(self)
                persistence.write_pid_file(self)
        except Exception as e:
            log.critical(f"Startup failed due to an error: {e}", exc_info=True)
            self.stop_all(is_cleanup_after_failure=True)
            return False

        log.info(
            f"Started {len(self.running_procs)} process(es) for {len(self.ecosystem)} app(s) "
            f"in {time.time() - start_time:.2f} seconds."
        )
        startup.wait_for_all_ports(self)
        return True

    def stop_all(self, is_cleanup_after_failure: bool = False) -> None:
        """
        Stops all managed app processes gracefully.

        :param is_cleanup_after_failure: If True, uses internal state instead of PID file.
        """
        self.shutdown_signal_received.set()
        watcher.stop_watchers(self)
        if not is_cleanup_after_failure and config.RUN_DIR.exists():
            config.SHUTDOWN_SIGNAL_PATH.touch()

        timeout = max([self.kill_timeout_for(key) for key in self._known_keys()] or [config.GRACEFUL_SHUTDOWN_TIMEOUT])
        if not self.foreground:
            shutdown.stop_supervisor(self, timeout)
        all_procs_to_stop = shutdown.identify_processes_to_stop(self, is_cleanup_after_failure)

        if not all_procs_to_stop:
            log.info("No running app processes found to stop.")
            shutdown.cleanup_shutdown_files()
            return

        log.info(f"Initiating graceful shutdown for {len(all_procs_to_stop)} total processes...")
        shutdown.graceful_shutdown_sequence(all_procs_to_stop, timeout)

        with self.lock:
            for key in list(self.popen_handles):
                process_utils._reap(self, key)
            self.running_procs.clear()
        log.info("App stop sequence completed.")

    def _known_keys(self) -> List[str]:
        keys = []
        for spec in self.ecosystem:
            keys.extend(spec.process_keys())
        return keys

    def get_pid_info(self) -> Dict[str, int]:
        """
        Retrieves the current process IDs from the PID file.
        If the PID file does not exist or is invalid, it returns an empty dictionary.

        :return: A dictionary of process keys and their PIDs.
        """
        return persistence.get_pid_info(self) or {}

    def supervision_loop(self) -> None:
        """Main supervisor loop that monitors and restarts app processes."""
        startup.initialize_supervision(self)
        watcher.start_watchers(self)
        interval = config.SUPERVISOR_SLEEP_INTERVAL

        try:
            while not self.shutdown_signal_received.is_set():
                try:
                    if persistence.check_for_shutdown_signal():
                        break

                    process_utils.monitor_processes(self)
                    self.process_pending_restarts()
                    self.reset_stable_restart_counts()

                    with self.lock:
                        idle = not self.running_procs and not self.pending_restarts
                    if idle:
                        log.warning("No app processes are running and none are scheduled to restart. Supervisor exiting.")
                        if not self.foreground:
                            shutdown.cleanup_shutdown_files()
                        break

                    self.shutdown_signal_received.wait(interval)

                except KeyboardInterrupt:
                    log.info("Supervisor loop interrupted by user.")
                    break
                except Exception as e:
                    log.critical(f"Critical error in supervisor loop: {e}", exc_info=True)
                    self.stop_all()
                    return
        finally:
            watcher.stop_watchers(self)
