from __future__ import annotations

import json
import os
import re

# trunk-ignore(bandit/B404)
import subprocess
import tempfile
from typing import TYPE_CHECKING, Optional

from bittensor import logging

from build_layer.errors import ToolchainError
from build_layer.toolchain.base_handler import ProvingSystemHandler
from constants import LOCAL_SNARKJS_INSTALL_DIR

if TYPE_CHECKING:
    from build_layer.prover_pool import ProverLease

CONSTRAINTS_PATTERN = re.compile(r"# of Constraints:\s*(\d+)")


def snarkjs_install_dir(version: str) -> str:
    return os.path.join(LOCAL_SNARKJS_INSTALL_DIR, f"v{version}")


def snarkjs_executable(version: str) -> str:
    return os.path.join(
        snarkjs_install_dir(version), "node_modules", ".bin", "snarkjs"
    )


class SnarkjsHandler(ProvingSystemHandler):
    """
    Drives one pinned snarkjs install through its CLI.

    All commands run under the build's prover lease when one is given.
    """

    def __init__(
        self,
        version: str,
        executable: Optional[str] = None,
        lease: Optional["ProverLease"] = None,
    ):
        self.version = version
        self.executable = executable or snarkjs_executable(version)
        self.lease = lease

    def _run(self, *args: str, input: Optional[str] = None):
        command = [self.executable, *args]
        logging.debug(f"Running snarkjs@{self.version} {' '.join(args)}")
        if self.lease is not None:
            result = self.lease.run(command, input=input)
        else:
            # trunk-ignore(bandit/B603)
            result = subprocess.run(
                command, input=input, capture_output=True, text=True
            )
        logging.trace(f"snarkjs stdout: {result.stdout}")
        logging.trace(f"snarkjs stderr: {result.stderr}")
        return result

    def _run_checked(self, *args: str, input: Optional[str] = None):
        result = self._run(*args, input=input)
        if result.returncode != 0:
            logging.error(
                f"snarkjs {args[0]} {args[1]} exited with {result.returncode}: {result.stderr}"
            )
            raise ToolchainError(
                "snarkjs_failed",
                f"snarkjs {' '.join(args[:2])} exited with {result.returncode}",
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    def package_version(self) -> str:
        package_json = os.path.join(
            snarkjs_install_dir(self.version), "node_modules", "snarkjs", "package.json"
        )
        try:
            with open(package_json, "r", encoding="utf-8") as f:
                return json.load(f)["version"]
        except (OSError, KeyError, json.JSONDecodeError):
            return self.version

    def constraint_count(self, r1cs_path: str) -> int:
        result = self._run_checked("r1cs", "info", r1cs_path)
        match = CONSTRAINTS_PATTERN.search(result.stdout + result.stderr)
        if match is None:
            raise ToolchainError(
                "snarkjs_failed",
                f"Unable to read constraint count from {r1cs_path}",
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return int(match.group(1))

    def new_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str):
        self._run_checked("groth16", "setup", r1cs_path, ptau_path, zkey_path)

    def contribute(self, zkey_in: str, zkey_out: str, name: str, entropy: bytes):
        self._run_checked(
            "zkey",
            "contribute",
            zkey_in,
            zkey_out,
            f"--name={name}",
            # Answered on the entropy prompt so it never shows up in argv
            input=f"{entropy.hex()}\n",
        )

    def setup(self, protocol: str, r1cs_path: str, ptau_path: str, zkey_path: str):
        self._run_checked(protocol, "setup", r1cs_path, ptau_path, zkey_path)

    def verify_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str) -> bool:
        result = self._run("zkey", "verify", r1cs_path, ptau_path, zkey_path)
        return result.returncode == 0 and "ZKey Ok!" in (result.stdout + result.stderr)

    def export_verification_key(self, zkey_path: str) -> dict:
        with tempfile.TemporaryDirectory() as tmp:
            vkey_path = os.path.join(tmp, "verification_key.json")
            self._run_checked(
                "zkey", "export", "verificationkey", zkey_path, vkey_path
            )
            with open(vkey_path, "r", encoding="utf-8") as f:
                return json.load(f)

    def export_solidity_verifier(self, zkey_path: str) -> str:
        with tempfile.TemporaryDirectory() as tmp:
            contract_path = os.path.join(tmp, "verifier.sol")
            self._run_checked(
                "zkey", "export", "solidityverifier", zkey_path, contract_path
            )
            with open(contract_path, "r", encoding="utf-8") as f:
                return f.read()
