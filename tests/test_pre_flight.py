import pytest

from utils import pre_flight


@pytest.mark.parametrize(
    "version, major",
    [("v20.11.1", 20), ("v22.0.0", 22), ("v18.19.0", 18), ("garbage", 0)],
)
def test_node_major_version(version, major):
    assert pre_flight.node_major_version(version) == major


def test_checks_run_in_order(monkeypatch):
    calls = []
    monkeypatch.setattr(pre_flight, "ensure_nodejs_version", lambda: calls.append("node"))
    monkeypatch.setattr(
        pre_flight, "ensure_snarkjs_installed", lambda v: calls.append(f"snarkjs {v}")
    )
    monkeypatch.setattr(
        pre_flight, "ensure_circom_available", lambda p: calls.append(p)
    )

    pre_flight.run_preflight_checks(["0.7.4", "0.7.3"], ["circom-v2.1.8"])

    assert calls == ["node", "snarkjs 0.7.4", "snarkjs 0.7.3", "circom-v2.1.8"]


def test_failed_check_stops_the_run(monkeypatch):
    calls = []

    def _old_node():
        raise RuntimeError("Node.js >= 20 is required, found v18.0.0.")

    monkeypatch.setattr(pre_flight, "ensure_nodejs_version", _old_node)
    monkeypatch.setattr(
        pre_flight, "ensure_snarkjs_installed", lambda v: calls.append(v)
    )

    with pytest.raises(RuntimeError):
        pre_flight.run_preflight_checks(["0.7.4"], [])
    assert calls == []


def test_missing_circom(monkeypatch):
    with pytest.raises(RuntimeError):
        pre_flight.ensure_circom_available("circom-v0.0.0-missing")
