import sys
import threading
from types import SimpleNamespace

from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileOpenedEvent

from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import Ecosystem, LaunchSpec
from devlaunch.local.supervisor import ProcessManager, watcher


class _RecordingManager(SimpleNamespace):
    def __init__(self):
        super().__init__(shutdown_signal_received=threading.Event(), restarted=[])

    def restart_app(self, name):
        self.restarted.append(name)


def _handler(monkeypatch, ignored=()):
    monkeypatch.setattr(config, "WATCH_DEBOUNCE_SECONDS", 60)
    manager = _RecordingManager()
    return manager, watcher.AppChangeHandler(manager, "web", ignored)


def test_change_triggers_restart_once_within_debounce(runtime_dirs, monkeypatch):
    manager, handler = _handler(monkeypatch)
    handler.on_any_event(FileModifiedEvent(str(runtime_dirs / "src" / "index.js")))
    handler.on_any_event(FileModifiedEvent(str(runtime_dirs / "src" / "other.js")))
    assert manager.restarted == ["web"]


def test_ignored_paths(runtime_dirs, monkeypatch):
    manager, handler = _handler(monkeypatch, ignored=["dist"])
    for path in (
        runtime_dirs / "node_modules" / "pkg" / "index.js",
        runtime_dirs / ".wrangler" / "state.json",
        runtime_dirs / "dist" / "bundle.js",
        config.LOGS_DIR / "web-out.log",
    ):
        handler.on_any_event(FileModifiedEvent(str(path)))
    assert manager.restarted == []


def test_directory_and_open_events_ignored(runtime_dirs, monkeypatch):
    manager, handler = _handler(monkeypatch)
    handler.on_any_event(DirModifiedEvent(str(runtime_dirs / "src")))
    handler.on_any_event(FileOpenedEvent(str(runtime_dirs / "src" / "index.js")))
    assert manager.restarted == []


def test_no_restart_during_shutdown(runtime_dirs, monkeypatch):
    manager, handler = _handler(monkeypatch)
    manager.shutdown_signal_received.set()
    handler.on_any_event(FileModifiedEvent(str(runtime_dirs / "src" / "index.js")))
    assert manager.restarted == []


def test_start_watchers_only_for_watching_apps(runtime_dirs):
    (runtime_dirs / "src").mkdir()
    eco = Ecosystem(apps=[
        LaunchSpec.from_dict({"name": "watched", "script": sys.executable, "watch": ["src", "missing"]}),
        LaunchSpec.from_dict({"name": "static", "script": sys.executable, "watch": False}),
    ], source=runtime_dirs / "ecosystem.config.cjs")
    manager = ProcessManager(eco, foreground=True)
    try:
        observers = watcher.start_watchers(manager)
        assert len(observers) == 1
        assert observers[0].is_alive()
    finally:
        watcher.stop_watchers(manager)
    assert manager.observers == []
