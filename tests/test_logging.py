import logging

from devlaunch.local.database import LogDBManager
from devlaunch.log.handler import LokiHandler, SQLiteHandler
from devlaunch.log.setup import MainFormatter


def _record(name, level, msg):
    return logging.LogRecord(name, level, __file__, 10, msg, None, None, func="worker")


def test_child_output_formatted_with_key():
    formatter = MainFormatter()
    assert formatter.format(_record("proc.upsend", logging.INFO, "Ready on :3000")) == "[upsend] Ready on :3000"
    assert "[devlaunch.x]" in formatter.format(_record("devlaunch.x", logging.INFO, "hello"))


def test_sqlite_handler_stores_child_lines(tmp_path):
    db_path = tmp_path / "logs.db"
    handler = SQLiteHandler(db_path=db_path)
    try:
        handler.emit(_record("proc.upsend", logging.ERROR, "boom"))
        handler.emit(_record("devlaunch.x", logging.DEBUG, "detail"))
        handler.flush()
    finally:
        handler.close()

    entries = LogDBManager(db_path).fetch_last_entries(10)
    assert [(e.module, e.level) for e in entries] == [("upsend", "ERROR"), ("test_logging", "DEBUG")]
    assert LogDBManager(db_path).fetch_last_entries(10, include_debug=False)[0].module == "upsend"


def test_loki_handler_pushes_child_streams(monkeypatch):
    sent = []

    class _Response:
        status_code = 204
        text = ""

    def fake_post(url, json, timeout):
        sent.append((url, json))
        return _Response()

    handler = LokiHandler(url="http://loki:3100/", org_id="tenant")
    monkeypatch.setattr(handler.session, "post", fake_post)
    try:
        handler.emit(_record("proc.upsend", logging.INFO, "Ready"))
        handler.flush()
    finally:
        handler.close()

    url, payload = sent[0]
    assert url == "http://loki:3100/loki/api/v1/push"
    assert handler.session.headers["X-Scope-OrgID"] == "tenant"
    stream = payload["streams"][0]
    assert stream["stream"]["logger"] == "upsend"
    assert stream["stream"]["job"] == "devlaunch-app"
    assert stream["values"][0][1] == "Ready"
