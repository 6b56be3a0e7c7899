import sys
import socket
import logging
import requests
import threading
from typing import Dict, List, Optional, Tuple
from devlaunch.local.config import effective_settings as config
from devlaunch.log.handler.sql import CHILD_PREFIX

# (job, level, logger) -> [[ns timestamp, line], ...]
_Batch = Dict[Tuple[str, str, str], List[List[str]]]


class LokiHandler(logging.Handler):
    """
    Pushes records to Grafana Loki.

    Supervisor records go to the `devlaunch` job; each app's output goes to the
    `devlaunch-app` job with the process key as its `logger` label. Records
    sharing labels are sent as one stream per push.
    """

    def __init__(self, url: str, org_id: Optional[str] = None, batch_size: int = 200):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: Tenant sent as the X-Scope-OrgID header.
        :param batch_size: Push as soon as this many records are pending.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.hostname = socket.gethostname() or "unknown-host"
        self.batch_size = batch_size
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL

        self.session = requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        if org_id:
            self.session.headers["X-Scope-OrgID"] = org_id

        self.batch: _Batch = {}
        self.pending = 0
        self.batch_lock = threading.Lock()
        self.wakeup = threading.Event()
        self.stop_event = threading.Event()
        self.pusher = threading.Thread(target=self._run, daemon=True, name="LokiPusher")
        self.pusher.start()

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(CHILD_PREFIX):
            labels = ("devlaunch-app", record.levelname.lower(), record.name[len(CHILD_PREFIX):])
            line = record.getMessage()
        else:
            labels = ("devlaunch", record.levelname.lower(), record.name)
            line = self.format(record)
        value = [str(int(record.created * 1e9)), line]

        with self.batch_lock:
            self.batch.setdefault(labels, []).append(value)
            self.pending += 1
            full = self.pending >= self.batch_size
        if full:
            self.wakeup.set()

    def _run(self) -> None:
        while not self.stop_event.is_set():
            self.wakeup.wait(self.flush_interval)
            self.wakeup.clear()
            self.flush()

    def _payload(self, batch: _Batch) -> dict:
        streams = []
        for (job, level, logger_name), values in batch.items():
            streams.append({
                "stream": {"job": job, "level": level, "hostname": self.hostname, "logger": logger_name},
                "values": values,
            })
        return {"streams": streams}

    def flush(self) -> None:
        """Pushes every pending record in a single request."""
        with self.batch_lock:
            batch, self.batch, self.pending = self.batch, {}, 0
        if not batch:
            return
        try:
            response = self.session.post(self.url, json=self._payload(batch), timeout=5)
        except requests.RequestException as e:
            print(f"Failed to push {sum(map(len, batch.values()))} records to Loki: {e}", file=sys.stderr)
            return
        # Loki answers a successful push with 204 No Content.
        if response.status_code != 204:
            print(f"Loki push rejected ({response.status_code}): {response.text}", file=sys.stderr)

    def close(self) -> None:
        self.stop_event.set()
        self.wakeup.set()
        if self.pusher.is_alive() and self.pusher is not threading.current_thread():
            self.pusher.join(timeout=self.flush_interval + 2)
        self.flush()
        self.session.close()
        super().close()
