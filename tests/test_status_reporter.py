import threading
import time

import pytest

from build_layer.status_reporter import StatusReporter, status_key
from tools.fakes import FakeBlobStore

KEY = status_key("test123abc")


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_status_key():
    assert KEY == "status/test123abc.json"


def test_log_records(store):
    reporter = StatusReporter(store, KEY)
    reporter.log("Compiling multiplier...")
    reporter.log("Circom memory usage", {"memoryUsage": 1024})

    first, second = reporter.logs
    assert first["msg"] == "Compiling multiplier..."
    assert "data" not in first
    assert second["data"] == {"memoryUsage": 1024}
    assert 0 <= first["time"] <= second["time"]
    assert store.puts == []


def test_flush_only_uploads_changes(store):
    reporter = StatusReporter(store, KEY)
    reporter.log("one")

    assert reporter.flush()
    assert not reporter.flush()
    reporter.log("two")
    assert reporter.flush()

    assert [len(payload) for _, payload in store.puts] == [1, 2]


def test_background_flush(store):
    reporter = StatusReporter(store, KEY)
    reporter.start_flushing(0.02)
    reporter.log("Compiling multiplier...")

    assert _wait_for(lambda: store.last_put(KEY) is not None)
    reporter.stop_flushing()


def test_stop_flushing_drains(store):
    reporter = StatusReporter(store, KEY)
    reporter.start_flushing(60)
    for i in range(5):
        reporter.log(f"record {i}")
    reporter.log("Complete.")

    reporter.stop_flushing()

    assert store.last_put(KEY)[-1]["msg"] == "Complete."


def test_stop_flushing_is_idempotent(store):
    reporter = StatusReporter(store, KEY)
    reporter.stop_flushing()
    reporter.start_flushing(0.01)
    reporter.log("done")
    reporter.stop_flushing()
    reporter.stop_flushing()

    assert store.last_put(KEY)[-1]["msg"] == "done"
    assert len(store.puts) == 1


def test_upload_failure_is_logged_and_retried():
    store = FakeBlobStore(failures=1)
    reporter = StatusReporter(store, KEY)
    reporter.log("first")

    assert not reporter.flush()
    assert reporter.logs[-1]["msg"] == "Status upload failed"
    assert "blob store unavailable" in reporter.logs[-1]["data"]["error"]

    assert reporter.flush()
    assert [record["msg"] for record in store.last_put(KEY)] == [
        "first",
        "Status upload failed",
    ]


def test_failing_store_never_escapes_the_loop():
    store = FakeBlobStore(failures=3)
    reporter = StatusReporter(store, KEY)
    reporter.start_flushing(0.01)
    reporter.log("first")

    assert _wait_for(lambda: store.last_put(KEY) is not None)
    reporter.stop_flushing()
    assert reporter.logs[0]["msg"] == "first"


def test_concurrent_logging(store):
    reporter = StatusReporter(store, KEY)
    reporter.start_flushing(0.005)

    def _log(n):
        for i in range(50):
            reporter.log(f"thread {n} record {i}")

    threads = [threading.Thread(target=_log, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    reporter.stop_flushing()

    assert len(store.last_put(KEY)) == 200


def test_resource_logs(store, tmp_path):
    reporter = StatusReporter(store, KEY)
    reporter.start_resource_logs(0.01, str(tmp_path))
    with pytest.raises(RuntimeError, match="already_logging_resources"):
        reporter.start_resource_logs(0.01, str(tmp_path))

    assert _wait_for(lambda: any(r["msg"] == "Memory Usage Update" for r in reporter.logs))
    reporter.stop_resource_logs()
    reporter.stop_resource_logs()

    record = next(r for r in reporter.logs if r["msg"] == "Memory Usage Update")
    assert record["data"]["memory"]["rss"] > 0
    assert record["data"]["disk"]["total"] > 0


def test_close_stops_everything(store, tmp_path):
    reporter = StatusReporter(store, KEY)
    reporter.start_flushing(0.01)
    reporter.start_resource_logs(0.01, str(tmp_path))
    reporter.log("Complete.")

    reporter.close()
    count = len(reporter.logs)
    time.sleep(0.05)

    assert len(reporter.logs) == count
    assert len(store.last_put(KEY)) == count
