import os
import sys
import time
import shlex
import json
import subprocess

import pytest

from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import Ecosystem, LaunchSpec
from devlaunch.local.supervisor import ProcessManager, persistence, process_utils, startup

SLEEPER = "-c 'import time; time.sleep(60)'"
CRASHER = "-c 'import sys; sys.exit(3)'"


def _ecosystem(args, **fields):
    data = {"name": "worker", "script": sys.executable, "args": args}
    data.update(fields)
    return Ecosystem(apps=[LaunchSpec.from_dict(data)])


@pytest.fixture
def manager_factory(runtime_dirs, monkeypatch):
    monkeypatch.setattr("devlaunch.local.supervisor.supervisor.setup_logging", lambda *a, **k: None)
    managers = []

    def make(ecosystem, foreground=True):
        manager = ProcessManager(ecosystem, foreground=foreground)
        managers.append(manager)
        return manager

    yield make
    for manager in managers:
        with manager.lock:
            procs = list(manager.running_procs.values())
        for proc in procs:
            if process_utils.is_alive(proc):
                proc.kill()


def _wait_for_exit(manager, key, timeout=10):
    manager.popen_handles[key].wait(timeout=timeout)


def test_build_argv_resolves_command():
    spec = _ecosystem(SLEEPER).get("worker")
    argv = process_utils.build_argv(spec)
    assert argv == [sys.executable, "-c", "import time; time.sleep(60)"]
    assert shlex.split(spec.arguments) == argv[1:]


def test_start_and_stop_foreground(manager_factory):
    manager = manager_factory(_ecosystem(SLEEPER, env={"GREETING": "hi"}))
    assert manager.start_all()

    proc = manager.running_procs["worker"]
    assert process_utils.is_alive(proc)
    assert json.loads(config.PID_FILE_PATH.read_text()) == {"worker": proc.pid}
    assert proc.environ().get("GREETING") == "hi"

    manager.stop_all()
    assert not process_utils.is_alive(proc)
    assert manager.running_procs == {}
    assert not config.PID_FILE_PATH.exists()


def test_refuses_to_start_twice(manager_factory):
    first = manager_factory(_ecosystem(SLEEPER))
    assert first.start_all()
    second = manager_factory(_ecosystem(SLEEPER))
    assert not second.start_all()
    first.stop_all()


def test_daemon_output_goes_to_files(manager_factory):
    manager = manager_factory(_ecosystem("-c 'print(\"hello from child\")'"), foreground=False)
    process_utils.launch_process(manager, "worker")
    _wait_for_exit(manager, "worker")
    assert "hello from child" in (config.LOGS_DIR / "worker-out.log").read_text()


def test_crash_is_restarted_until_limit(manager_factory):
    manager = manager_factory(_ecosystem(CRASHER, max_restarts=2, restart_delay=0))
    process_utils.launch_process(manager, "worker")

    for attempt in (1, 2):
        _wait_for_exit(manager, "worker")
        assert process_utils.monitor_processes(manager) == ["worker"]
        assert "worker" in manager.pending_restarts
        manager.process_pending_restarts()
        assert manager.restart_counts["worker"] == attempt
        assert "worker" in manager.running_procs

    _wait_for_exit(manager, "worker")
    process_utils.monitor_processes(manager)
    manager.process_pending_restarts()
    assert "worker" in manager.errored
    assert "worker" not in manager.pending_restarts
    assert "worker" not in manager.running_procs


def test_restart_delay_is_honoured(manager_factory):
    manager = manager_factory(_ecosystem(CRASHER, restart_delay=60000))
    process_utils.launch_process(manager, "worker")
    _wait_for_exit(manager, "worker")
    process_utils.monitor_processes(manager)

    manager.process_pending_restarts()
    assert "worker" in manager.pending_restarts
    assert "worker" not in manager.running_procs


def test_autorestart_disabled(manager_factory):
    manager = manager_factory(_ecosystem(CRASHER, autorestart=False))
    process_utils.launch_process(manager, "worker")
    _wait_for_exit(manager, "worker")
    assert process_utils.monitor_processes(manager) == ["worker"]
    assert manager.pending_restarts == set()


def test_supervision_loop_exits_when_nothing_runs(manager_factory, monkeypatch):
    monkeypatch.setattr(config, "SUPERVISOR_SLEEP_INTERVAL", 0.05)
    manager = manager_factory(_ecosystem(CRASHER, autorestart=False))
    process_utils.launch_process(manager, "worker")

    started = time.monotonic()
    manager.supervision_loop()
    assert time.monotonic() - started < 10
    assert manager.running_procs == {}


def test_supervision_loop_stops_on_signal(manager_factory, monkeypatch):
    monkeypatch.setattr(config, "SUPERVISOR_SLEEP_INTERVAL", 0.05)
    manager = manager_factory(_ecosystem(SLEEPER))
    process_utils.launch_process(manager, "worker")
    config.RUN_DIR.mkdir(parents=True, exist_ok=True)
    config.SHUTDOWN_SIGNAL_PATH.touch()

    manager.supervision_loop()
    assert "worker" in manager.running_procs
    manager.stop_all()


def test_restart_app_replaces_process(manager_factory):
    manager = manager_factory(_ecosystem(SLEEPER, kill_timeout=2000))
    process_utils.launch_process(manager, "worker")
    old = manager.running_procs["worker"]

    manager.restart_app("worker")
    new = manager.running_procs["worker"]
    assert new.pid != old.pid
    assert not process_utils.is_alive(old)
    assert manager.restart_counts.get("worker") is None
    manager.stop_all()


def test_kill_timeout(manager_factory):
    manager = manager_factory(_ecosystem(SLEEPER, kill_timeout=2500))
    assert manager.kill_timeout_for("worker") == 2.5
    assert manager.kill_timeout_for("unknown") == config.GRACEFUL_SHUTDOWN_TIMEOUT


def test_restart_count_cleared_once_process_is_stable(manager_factory):
    manager = manager_factory(_ecosystem(SLEEPER))
    process_utils.launch_process(manager, "worker")
    manager.restart_counts["worker"] = 2

    manager.reset_stable_restart_counts()
    assert manager.restart_counts["worker"] == 2

    manager.started_at["worker"] = time.time() - config.RESTART_COOLDOWN_PERIOD - 1
    manager.reset_stable_restart_counts()
    assert "worker" not in manager.restart_counts
    manager.stop_all()


def test_restart_count_kept_while_process_is_down(manager_factory):
    manager = manager_factory(_ecosystem(CRASHER, restart_delay=60000))
    manager.restart_counts["worker"] = 1
    manager.started_at["worker"] = time.time() - config.RESTART_COOLDOWN_PERIOD - 1

    manager.reset_stable_restart_counts()
    assert manager.restart_counts["worker"] == 1


def test_pid_file_written_before_supervisor_spawn(manager_factory, monkeypatch):
    seen = {}

    def fake_spawn(manager):
        seen["exists"] = config.PID_FILE_PATH.exists()
        seen["pids"] = persistence.get_pid_info()

    monkeypatch.setattr(startup, "spawn_supervisor_process", fake_spawn)
    manager = manager_factory(_ecosystem(SLEEPER), foreground=False)
    assert manager.start_all()

    assert seen["exists"]
    assert seen["pids"] == {"worker": manager.running_procs["worker"].pid}
    manager.stop_all()


class _FakePopen:
    calls = []

    def __init__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        self.pid = os.getpid()


@pytest.mark.parametrize("source, expected", [
    (None, ["--builtin"]),
    ("ecosystem.config.cjs", ["--file"]),
])
def test_spawn_supervisor_arguments(manager_factory, monkeypatch, runtime_dirs, source, expected):
    monkeypatch.setattr(_FakePopen, "calls", [])
    monkeypatch.setattr(startup.subprocess, "Popen", _FakePopen)
    ecosystem = _ecosystem(SLEEPER)
    if source is not None:
        ecosystem.source = runtime_dirs / source
        expected = expected + [str((runtime_dirs / source).resolve())]
    manager = manager_factory(ecosystem, foreground=False)

    proc = startup.spawn_supervisor_process(manager)

    (args, kwargs), = _FakePopen.calls
    assert args == [config.PYTHON_EXECUTABLE, "-m", startup.SUPERVISOR_ENTRY_MODULE] + expected
    assert kwargs["env"]["DEVLAUNCH_HOME"] == str(runtime_dirs)
    assert kwargs["cwd"] == str(manager.base_dir)
    assert proc.pid == os.getpid()
    assert manager.supervisor_proc.pid == os.getpid()


def test_supervisor_adopts_live_apps_and_restarts_missing(manager_factory):
    ecosystem = Ecosystem(apps=[
        LaunchSpec.from_dict({"name": "worker", "script": sys.executable, "args": SLEEPER}),
        LaunchSpec.from_dict({"name": "other", "script": sys.executable, "args": SLEEPER}),
    ])
    live = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    gone = subprocess.Popen([sys.executable, "-c", "pass"])
    gone.wait(timeout=10)
    try:
        config.RUN_DIR.mkdir(parents=True, exist_ok=True)
        config.PID_FILE_PATH.write_text(json.dumps({"worker": live.pid, "other": gone.pid}))
        manager = manager_factory(ecosystem, foreground=False)

        startup.initialize_supervision(manager)

        assert set(manager.running_procs) == {"worker"}
        assert manager.running_procs["worker"].pid == live.pid
        assert manager.pending_restarts == {"other"}
        assert manager.supervisor_proc.pid == os.getpid()
    finally:
        live.kill()
        live.wait(timeout=10)
