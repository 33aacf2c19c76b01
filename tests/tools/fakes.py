import copy
import json
import os
import struct
import threading
from typing import Optional

from build_layer.errors import DownloadError, ToolchainError
from build_layer.toolchain.base_handler import ProvingSystemHandler

MULTIPLIER_CIRCUIT = """pragma circom 2.1.8;

template Multiplier() {
    signal input a;
    signal input b;
    signal output c;

    c <== a * b;
}
"""

VERIFIER_SOURCE = """// SPDX-License-Identifier: GPL-3.0
pragma solidity >=0.7.0 <0.9.0;
import "hardhat/console.sol";

contract PlonkVerifier {}
"""


def make_payload(**overrides) -> dict:
    payload = {
        "action": "build",
        "requestId": "test123abc",
        "files": {"multiplier.circom": {"code": MULTIPLIER_CIRCUIT}},
        "circuit": {
            "file": "multiplier",
            "template": "Multiplier",
            "params": [],
            "pubs": [],
        },
        "circomPath": "circom-v2.1.8",
        "protocol": "plonk",
        "snarkjsVersion": "0.7.4",
    }
    payload.update(overrides)
    return payload


def ptau_bytes(power: int) -> bytes:
    """
    Minimal ptau file: magic, version, one header section.
    """
    n8 = 32
    header = struct.pack("<I", n8) + b"\x01" * n8 + struct.pack("<II", power, power)
    return (
        b"ptau"
        + struct.pack("<II", 1, 1)
        + struct.pack("<IQ", 1, len(header))
        + header
    )


class FakeDownloader:
    """
    Stands in for ``download_file``; serves registered URLs from memory.
    """

    def __init__(self, files: Optional[dict[str, bytes]] = None, default_power: int = 12):
        self.files = dict(files or {})
        self.default_power = default_power
        self.calls: list[tuple[str, str]] = []

    def __call__(self, url: str, file_path: str, reuse_existing: bool = False, **kwargs):
        self.calls.append((url, file_path))
        if reuse_existing and os.path.isfile(file_path):
            return file_path
        if url in self.files:
            content = self.files[url]
        elif url.endswith(".ptau"):
            content = ptau_bytes(self.default_power)
        else:
            raise DownloadError("download_failed", f"{url}: 404")
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with open(file_path, "wb") as f:
            f.write(content)
        return file_path


class FakeBlobStore:
    """
    Records every write, keeping a copy of uploaded file contents since the
    workspace is removed once the build ends.
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.puts: list[tuple[str, object]] = []
        self.uploads: list[tuple[str, bytes]] = []
        self._lock = threading.Lock()

    def put_json(self, key: str, payload):
        with self._lock:
            if self.failures:
                self.failures -= 1
                raise ConnectionError("blob store unavailable")
            self.puts.append((key, json.loads(json.dumps(payload, default=str))))

    def upload_file(self, key: str, file_path: str, progress=None):
        with open(file_path, "rb") as f:
            content = f.read()
        with self._lock:
            self.uploads.append((key, content))
        if progress:
            progress(len(content), len(content))

    @property
    def upload_keys(self) -> list[str]:
        return [key for key, _ in self.uploads]

    def uploaded(self, key: str) -> bytes:
        return dict(self.uploads)[key]

    def last_put(self, key: str):
        for put_key, payload in reversed(self.puts):
            if put_key == key:
                return payload
        return None


class RecordingStatus:
    """
    In-memory status log with the reporter's ``log`` signature.
    """

    def __init__(self):
        self.records: list[dict] = []

    def log(self, msg: str, data: Optional[dict] = None):
        record = {"msg": msg}
        if data is not None:
            record["data"] = copy.deepcopy(data)
        self.records.append(record)

    @property
    def messages(self) -> list[str]:
        return [record["msg"] for record in self.records]


class FakeProvingSystem(ProvingSystemHandler):
    """
    Writes placeholder keys instead of running snarkjs.
    """

    def __init__(
        self,
        version: str = "0.7.4",
        constraints: int = 1,
        valid_zkey: bool = True,
        fail_on: Optional[str] = None,
    ):
        self.version = version
        self.constraints = constraints
        self.valid_zkey = valid_zkey
        self.fail_on = fail_on
        self.calls: list[tuple] = []
        self.lease = None

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise ToolchainError("snarkjs_failed", f"snarkjs {name} exited with 1")

    @staticmethod
    def _write(path: str, content: bytes):
        with open(path, "wb") as f:
            f.write(content)

    def constraint_count(self, r1cs_path: str) -> int:
        self._record("constraint_count", r1cs_path)
        return self.constraints

    def new_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str):
        self._record("new_zkey", r1cs_path, ptau_path, zkey_path)
        self._write(zkey_path, b"zkey-0")

    def contribute(self, zkey_in: str, zkey_out: str, name: str, entropy: bytes):
        assert os.path.isfile(zkey_in)
        self._record("contribute", zkey_in, zkey_out, name, entropy)
        with open(zkey_in, "rb") as f:
            previous = f.read()
        self._write(zkey_out, previous + b"+" + name.encode())

    def setup(self, protocol: str, r1cs_path: str, ptau_path: str, zkey_path: str):
        self._record("setup", protocol, r1cs_path, ptau_path, zkey_path)
        self._write(zkey_path, f"{protocol}-zkey".encode())

    def verify_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str) -> bool:
        self._record("verify_zkey", r1cs_path, ptau_path, zkey_path)
        return self.valid_zkey

    def export_verification_key(self, zkey_path: str) -> dict:
        self._record("export_verification_key", zkey_path)
        return {"protocol": "plonk", "curve": "bn128", "nPublic": 1}

    def export_solidity_verifier(self, zkey_path: str) -> str:
        self._record("export_solidity_verifier", zkey_path)
        return VERIFIER_SOURCE

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeCompiler:
    """
    Takes the place of ``CircomHandler``: writes the artifacts circom would.
    """

    instances: list["FakeCompiler"] = []

    def __init__(self, circom_path: str, log, fail: bool = False):
        self.circom_path = circom_path
        self.log = log
        self.fail = fail
        self.options = None
        FakeCompiler.instances.append(self)

    def version(self) -> str:
        return f"circom compiler {self.circom_path[len('circom-v'):]}"

    def compile(self, paths, options):
        self.options = options
        assert os.path.isfile(paths.main_circuit)
        self.log.info("template instances: 1")
        if self.fail:
            self.log.error("error[T3001]: Exception caused by invalid assignment")
            raise ToolchainError("compile_failed", f"{self.circom_path} exited with 1")
        os.makedirs(paths.circuit_build_dir, exist_ok=True)
        with open(paths.r1cs, "wb") as f:
            f.write(b"r1cs")
        wasm_path = os.path.join(paths.package_dir, paths.wasm_relative)
        os.makedirs(os.path.dirname(wasm_path), exist_ok=True)
        with open(wasm_path, "wb") as f:
            f.write(b"\x00asm")


class FailingCompiler(FakeCompiler):
    def __init__(self, circom_path: str, log):
        super().__init__(circom_path, log, fail=True)
