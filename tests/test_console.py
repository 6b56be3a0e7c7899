import logging

from devlaunch.local.config import effective_settings as config
from devlaunch.local.console import execute_command
from devlaunch.local.console import process as console_process
from devlaunch.local.database import LogDBManager
from devlaunch.main import main


def _use_file(monkeypatch, path):
    monkeypatch.setattr(console_process, "ecosystem_path", path)


def test_exit_and_unknown_commands(runtime_dirs):
    assert execute_command("exit", []) is True
    assert execute_command("frobnicate", []) is False


def test_show_prints_shipped_file(runtime_dirs, monkeypatch, capsys, shipped_ecosystem):
    _use_file(monkeypatch, shipped_ecosystem)
    execute_command("show", [])
    assert shipped_ecosystem.read_text(encoding="utf-8") in capsys.readouterr().out

    execute_command("show", ["json"])
    assert '"name": "upsend"' in capsys.readouterr().out


def test_builtin_fallback_without_file(runtime_dirs, capsys, shipped_ecosystem):
    execute_command("show", [])
    assert shipped_ecosystem.read_text(encoding="utf-8") in capsys.readouterr().out


def test_convert_writes_target(runtime_dirs, monkeypatch, capsys, shipped_ecosystem):
    _use_file(monkeypatch, shipped_ecosystem)
    target = runtime_dirs / "ecosystem.yaml"
    execute_command("convert", [str(target)])
    assert "name: upsend" in target.read_text(encoding="utf-8")


def test_ecosystem_errors_are_reported(runtime_dirs, monkeypatch, caplog):
    broken = runtime_dirs / "broken.config.cjs"
    broken.write_text("module.exports = { apps: [ { name: 'x' } ] }")
    _use_file(monkeypatch, broken)
    with caplog.at_level(logging.ERROR):
        assert execute_command("show", []) is False
    assert "missing 'script'" in caplog.text


def test_status_when_stopped(runtime_dirs, monkeypatch, capsys, shipped_ecosystem):
    _use_file(monkeypatch, shipped_ecosystem)
    execute_command("status", [])
    assert "STOPPED" in capsys.readouterr().out


def test_config_set_and_show(runtime_dirs, monkeypatch, capsys):
    monkeypatch.setattr(config, "LOG_HISTORY_COUNT", config.LOG_HISTORY_COUNT)
    execute_command("config", ["set", "log_history_count", "20"])
    assert config.LOG_HISTORY_COUNT == 20
    assert config.OVERRIDES_JSON_PATH.exists()

    execute_command("config", ["show"])
    assert "LOG_HISTORY_COUNT = 20" in capsys.readouterr().out


def test_logs_reads_database(runtime_dirs, capsys):
    config.LOGS_DIR.mkdir(parents=True)
    db = LogDBManager(config.LOG_DB_PATH)
    db.initialize_database()
    db.insert_log_batch([
        {"timestamp": 1.0, "level": "INFO", "module": "upsend", "funcName": "stdout", "lineno": 0, "message": "ready"},
        {"timestamp": 2.0, "level": "INFO", "module": "startup", "funcName": "f", "lineno": 1, "message": "other"},
    ])
    execute_command("logs", ["upsend"])
    out = capsys.readouterr().out
    assert "[upsend] - ready" in out
    assert "other" not in out


def test_main_non_interactive(runtime_dirs, monkeypatch, capsys, shipped_ecosystem):
    monkeypatch.setattr("devlaunch.main.setup_logging", lambda *a, **k: None)
    monkeypatch.setattr(console_process, "ecosystem_path", None)
    main(["--file", str(shipped_ecosystem), "show", "yaml"])
    assert "exec_mode: fork" in capsys.readouterr().out
    assert console_process.ecosystem_path == shipped_ecosystem
