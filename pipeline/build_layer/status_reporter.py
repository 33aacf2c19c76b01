from __future__ import annotations

import os
import threading
import time
from typing import Any, Optional

import psutil
from bittensor import logging

from constants import (
    RESOURCE_LOG_INTERVAL_SECONDS,
    STATUS_FLUSH_INTERVAL_SECONDS,
    STATUS_KEY_PREFIX,
)
from utils.periodic import PeriodicWorker


def status_key(request_id: str) -> str:
    return f"{STATUS_KEY_PREFIX}/{request_id}.json"


class StatusReporter:
    """
    Append-only build log mirrored to the blob store in the background.

    ``log`` never blocks on the network. A flush loop uploads the whole log
    (overwriting the previous object) whenever it has grown since the last
    successful upload, and ``stop_flushing`` drains pending records before it
    returns.
    """

    def __init__(self, store, key: str):
        self.store = store
        self.key = key
        self._records: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._upload_lock = threading.Lock()
        self._uploaded_length = 0
        self._started_at = time.monotonic()
        self._flusher: Optional[PeriodicWorker] = None
        self._resource_logger: Optional[PeriodicWorker] = None

    @property
    def logs(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._records)

    def log(self, msg: str, data: Optional[dict] = None):
        record: dict[str, Any] = {"msg": msg}
        if data is not None:
            record["data"] = data
        record["time"] = round(time.monotonic() - self._started_at, 3)
        with self._lock:
            self._records.append(record)
        logging.debug(f"STATUS | {msg}")

    def flush(self) -> bool:
        """
        Upload the full log if it changed since the last upload.

        Returns:
            bool: True when an upload happened.
        """
        with self._upload_lock:
            with self._lock:
                if len(self._records) == self._uploaded_length:
                    return False
                snapshot = list(self._records)
            try:
                self.store.put_json(self.key, snapshot)
            except Exception as e:
                logging.warning(f"Failed to upload status to {self.key}: {e}")
                # Recorded locally so the next tick retries with the failure included
                self.log("Status upload failed", {"error": str(e)})
                return False
            self._uploaded_length = len(snapshot)
            return True

    def start_flushing(self, interval: float = STATUS_FLUSH_INTERVAL_SECONDS):
        if self._flusher is not None and self._flusher.running:
            return
        self._flusher = PeriodicWorker(interval, self.flush, "status-flush").start()

    def stop_flushing(self):
        """
        Stop the flush loop and drain.

        Waits for an in-flight flush, then uploads anything appended since.
        Safe to call repeatedly and without a prior ``start_flushing``.
        """
        if self._flusher is not None:
            self._flusher.stop()
            self._flusher = None
        self.flush()

    def start_resource_logs(
        self,
        interval: float = RESOURCE_LOG_INTERVAL_SECONDS,
        disk_path: Optional[str] = None,
    ):
        if self._resource_logger is not None:
            raise RuntimeError("already_logging_resources")
        disk_path = disk_path or os.getcwd()
        process = psutil.Process()

        def _log_usage():
            self.log(
                "Memory Usage Update",
                {
                    "memory": process.memory_info()._asdict(),
                    "disk": psutil.disk_usage(disk_path)._asdict(),
                },
            )

        self._resource_logger = PeriodicWorker(
            interval, _log_usage, "resource-logs"
        ).start()

    def stop_resource_logs(self):
        if self._resource_logger is not None:
            self._resource_logger.stop()
            self._resource_logger = None

    def close(self):
        self.stop_resource_logs()
        self.stop_flushing()
