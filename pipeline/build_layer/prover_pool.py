from __future__ import annotations

import subprocess
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from bittensor import logging

from constants import MAX_CONCURRENT_PROVERS, PROVER_RELEASE_GRACE_SECONDS


class ProverLease:
    """
    One build's share of the prover pool.

    Every snarkjs process a build starts runs through its lease, so releasing
    the lease can reap any worker still alive.
    """

    def __init__(self, pool: ProverPool, owner: str):
        self.pool = pool
        self.owner = owner
        self._children: set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def run(
        self, command: list[str], input: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        with self._lock:
            if self._released:
                raise RuntimeError("prover_lease_released")
            # trunk-ignore(bandit/B603)
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE if input is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            self._children.add(process)
        try:
            stdout, stderr = process.communicate(input)
        finally:
            with self._lock:
                self._children.discard(process)
        return subprocess.CompletedProcess(command, process.returncode, stdout, stderr)

    def release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
            children = list(self._children)
            self._children.clear()
        for process in children:
            if process.poll() is None:
                logging.warning(
                    f"Terminating prover process {process.pid} left by {self.owner}"
                )
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
        self.pool._release_slot(self)


class ProverPool:
    """
    Process wide bound on concurrent builds driving snarkjs.
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_PROVERS,
        grace_seconds: float = PROVER_RELEASE_GRACE_SECONDS,
    ):
        self.max_concurrent = max_concurrent
        self.grace_seconds = grace_seconds
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._active: set[ProverLease] = set()
        self._lock = threading.Lock()

    @property
    def active_leases(self) -> int:
        with self._lock:
            return len(self._active)

    def acquire(self, owner: str) -> ProverLease:
        self._semaphore.acquire()
        lease = ProverLease(self, owner)
        with self._lock:
            self._active.add(lease)
        logging.trace(f"Prover lease acquired by {owner}")
        return lease

    def _release_slot(self, lease: ProverLease):
        with self._lock:
            self._active.discard(lease)
        self._semaphore.release()
        logging.trace(f"Prover lease released by {lease.owner}")

    @contextmanager
    def lease(self, owner: str) -> Iterator[ProverLease]:
        """
        Hold a prover slot for the duration of a build.

        The slot is released exactly once on every exit path, after a short
        grace delay that lets in-flight work settle.
        """
        lease = self.acquire(owner)
        try:
            yield lease
        finally:
            if self.grace_seconds:
                time.sleep(self.grace_seconds)
            lease.release()


prover_pool = ProverPool()
