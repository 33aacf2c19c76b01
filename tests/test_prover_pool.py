import sys
import threading
import time

import pytest

from build_layer.prover_pool import ProverPool


def test_lease_released_on_success():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    with pool.lease("build-a") as lease:
        assert pool.active_leases == 1
    assert lease.released
    assert pool.active_leases == 0


def test_lease_released_on_failure():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    with pytest.raises(ValueError):
        with pool.lease("build-a"):
            raise ValueError("setup failed")
    assert pool.active_leases == 0
    # The slot is free again
    with pool.lease("build-b"):
        pass


def test_release_is_idempotent():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    lease = pool.acquire("build-a")
    lease.release()
    lease.release()
    assert pool.active_leases == 0
    # A second release of the semaphore would raise ValueError here
    pool.acquire("build-b").release()


def test_pool_bounds_concurrency():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    acquired = threading.Event()
    first = pool.acquire("build-a")

    def _second():
        with pool.lease("build-b"):
            acquired.set()

    thread = threading.Thread(target=_second)
    thread.start()
    assert not acquired.wait(0.1)
    first.release()
    assert acquired.wait(5)
    thread.join()


def test_grace_delay_before_release():
    pool = ProverPool(max_concurrent=1, grace_seconds=0.1)
    started = time.monotonic()
    with pool.lease("build-a"):
        pass
    assert time.monotonic() - started >= 0.1


def test_run_through_lease():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    with pool.lease("build-a") as lease:
        result = lease.run([sys.executable, "-c", "print('ok')"])
    assert result.returncode == 0
    assert result.stdout.strip() == "ok"


def test_run_through_lease_with_input():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    with pool.lease("build-a") as lease:
        result = lease.run(
            [sys.executable, "-c", "print(input()[::-1])"], input="entropy\n"
        )
    assert result.returncode == 0
    assert result.stdout.strip() == "yportne"


def test_run_after_release():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    lease = pool.acquire("build-a")
    lease.release()
    with pytest.raises(RuntimeError, match="prover_lease_released"):
        lease.run([sys.executable, "-c", "pass"])


def test_release_terminates_running_children():
    pool = ProverPool(max_concurrent=1, grace_seconds=0)
    lease = pool.acquire("build-a")
    results = []

    def _run():
        results.append(lease.run([sys.executable, "-c", "import time; time.sleep(60)"]))

    thread = threading.Thread(target=_run)
    thread.start()
    deadline = time.monotonic() + 5
    while not lease._children and time.monotonic() < deadline:
        time.sleep(0.01)

    lease.release()
    thread.join(10)

    assert not thread.is_alive()
    assert results[0].returncode != 0
