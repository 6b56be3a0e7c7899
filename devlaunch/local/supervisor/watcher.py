import time
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
from devlaunch.local.config import effective_settings as config

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)

DEFAULT_IGNORED_PARTS = {"node_modules", ".git", ".wrangler", "__pycache__"}


class AppChangeHandler(FileSystemEventHandler):
    """A watchdog event handler that restarts one app when its watched files change."""

    def __init__(self, manager: "ProcessManager", app_name: str, ignored: Iterable[str] = ()):
        super().__init__()
        self.manager = manager
        self.app_name = app_name
        self.ignored_parts = DEFAULT_IGNORED_PARTS | set(ignored)
        self.debounce_interval = config.WATCH_DEBOUNCE_SECONDS
        self.last_restart = 0.0

    def _is_ignored(self, path_str: str) -> bool:
        path = Path(path_str).resolve()
        if config.RUN_DIR.resolve() in path.parents or path == config.RUN_DIR.resolve():
            return True
        return any(part in self.ignored_parts for part in path.parts)

    def on_any_event(self, event) -> None:
        """The main event handler method for watchdog, called on any file change."""
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        if self._is_ignored(event.src_path):
            return
        if self.manager.shutdown_signal_received.is_set():
            return

        now = time.monotonic()
        if now - self.last_restart < self.debounce_interval:
            return
        self.last_restart = now

        log.info(f"Watch: {event.event_type} on {event.src_path}. Restarting '{self.app_name}'.")
        try:
            self.manager.restart_app(self.app_name)
        except Exception as e:
            log.error(f"Watch restart of '{self.app_name}' failed: {e}", exc_info=True)


def start_watchers(manager: "ProcessManager") -> List[Observer]:
    """
    Starts one observer per app that enables `watch`.

    :param manager: The ProcessManager instance.
    :return: The started observers (also stored on the manager).
    """
    for spec in manager.ecosystem:
        paths = spec.watch_paths(manager.base_dir)
        if not paths:
            continue

        ignored = spec.extra.get("ignore_watch") or []
        if isinstance(ignored, str):
            ignored = [ignored]
        handler = AppChangeHandler(manager, spec.name, ignored)
        observer = Observer()
        scheduled = 0
        for path in paths:
            if not path.exists():
                log.warning(f"Watch path '{path}' for app '{spec.name}' does not exist. Skipping.")
                continue
            observer.schedule(handler, str(path), recursive=path.is_dir())
            scheduled += 1
        if not scheduled:
            continue

        observer.start()
        manager.observers.append(observer)
        log.info(f"Watching {scheduled} path(s) for app '{spec.name}'.")
    return manager.observers


def stop_watchers(manager: "ProcessManager") -> None:
    """Stops and joins all observers of the manager."""
    for observer in manager.observers:
        observer.stop()
    for observer in manager.observers:
        observer.join(timeout=5)
    manager.observers.clear()
