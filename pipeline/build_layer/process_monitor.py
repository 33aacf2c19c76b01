from __future__ import annotations

import os
from typing import Callable, Optional

import psutil
from bittensor import logging

from utils.periodic import PeriodicWorker


def _matches(process: psutil.Process, process_name: str) -> bool:
    name = process.info.get("name") or ""
    if name == process_name:
        return True
    cmdline = process.info.get("cmdline") or []
    return bool(cmdline) and os.path.basename(cmdline[0]) == process_name


def sample_memory(process_name: str) -> Optional[int]:
    """
    Sum the resident memory of every process called ``process_name``.

    The compiler may fork helpers, so all matches count.

    Returns:
        Optional[int]: Total RSS in bytes, or None when nothing matches.
    """
    total = 0
    found = False
    for process in psutil.process_iter(["name", "cmdline", "memory_info"]):
        try:
            if not _matches(process, process_name):
                continue
            memory_info = process.info.get("memory_info")
            if memory_info is None:
                continue
            total += memory_info.rss
            found = True
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return total if found else None


class MonitorHandle:
    def __init__(self, worker: PeriodicWorker):
        self._worker = worker

    @property
    def active(self) -> bool:
        return self._worker.running

    def cancel(self):
        self._worker.stop()


class ProcessMonitor:
    @staticmethod
    def start(
        process_name: str,
        interval: float,
        callback: Callable[[int], None],
    ) -> MonitorHandle:
        """
        Sample the memory of ``process_name`` every ``interval`` seconds.

        Args:
            process_name (str): Executable name to look for.
            interval (float): Seconds between samples.
            callback (Callable[[int], None]): Receives the summed RSS in bytes.

        Returns:
            MonitorHandle: Call ``cancel()`` before the process exits.
        """

        def _tick():
            memory_usage = sample_memory(process_name)
            if memory_usage is None:
                logging.debug(f"Process {process_name} not found.")
                return
            callback(memory_usage)

        worker = PeriodicWorker(interval, _tick, f"monitor-{process_name}")
        return MonitorHandle(worker.start())
