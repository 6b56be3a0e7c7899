from pathlib import Path

import pytest

from devlaunch.local.config import effective_settings as config

ROOT = Path(__file__).resolve().parent.parent
SHIPPED_ECOSYSTEM = ROOT / "ecosystem.config.cjs"


@pytest.fixture
def shipped_ecosystem() -> Path:
    return SHIPPED_ECOSYSTEM


@pytest.fixture
def runtime_dirs(tmp_path, monkeypatch):
    """Points every runtime path of the effective settings into tmp_path."""
    run_dir = tmp_path / ".devlaunch"
    logs_dir = run_dir / "logs"
    monkeypatch.setattr(config, "BASE_DIR", tmp_path)
    monkeypatch.setattr(config, "RUN_DIR", run_dir)
    monkeypatch.setattr(config, "LOGS_DIR", logs_dir)
    monkeypatch.setattr(config, "LOG_DB_PATH", logs_dir / "devlaunch_logs.db")
    monkeypatch.setattr(config, "PID_FILE_PATH", run_dir / "devlaunch.pid")
    monkeypatch.setattr(config, "OVERRIDES_JSON_PATH", run_dir / "overrides.json")
    monkeypatch.setattr(config, "SHUTDOWN_SIGNAL_PATH", run_dir / "shutdown.signal")
    monkeypatch.setattr(config, "ECOSYSTEM_FILE", tmp_path / "ecosystem.config.cjs")
    return tmp_path
