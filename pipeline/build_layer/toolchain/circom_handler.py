from __future__ import annotations

import os

# trunk-ignore(bandit/B404)
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from bittensor import logging

from build_layer.errors import ToolchainError
from constants import CIRCOM_PREFIX

if TYPE_CHECKING:
    from build_layer.status_reporter import StatusReporter
    from build_layer.workspace import BuildPaths


class CompilerLog(Protocol):
    """
    Sink for compiler output, one method per severity.
    """

    def trace(self, msg: str): ...

    def debug(self, msg: str): ...

    def info(self, msg: str): ...

    def warn(self, msg: str): ...

    def error(self, msg: str): ...


class StatusCompilerLog:
    """
    Routes compiler output into the build's status log.
    """

    def __init__(self, status: "StatusReporter"):
        self.status = status

    def trace(self, msg: str):
        self.status.log("Circomkit Trace Log", {"msg": msg})

    def debug(self, msg: str):
        self.status.log("Circomkit Debug Log", {"msg": msg})

    def info(self, msg: str):
        self.status.log("Circomkit Info Log", {"msg": msg})

    def warn(self, msg: str):
        self.status.log("Circomkit Warn Log", {"msg": msg})

    def error(self, msg: str):
        self.status.log("Circomkit Error Log", {"msg": msg})


@dataclass
class CompileOptions:
    prime: str
    optimization: int
    c_witness: bool = False
    skip_wasm: bool = False


class CircomHandler:
    """
    Runs one circom compiler binary (``circom-v<version>``).
    """

    def __init__(self, circom_path: str, log: CompilerLog):
        self.circom_path = circom_path
        self.log = log

    @property
    def pinned_version(self) -> str:
        if self.circom_path.startswith(CIRCOM_PREFIX):
            return self.circom_path[len(CIRCOM_PREFIX):]
        return self.circom_path

    def version(self) -> str:
        try:
            # trunk-ignore(bandit/B603)
            result = subprocess.run(
                [self.circom_path, "--version"],
                check=True,
                capture_output=True,
                text=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise ToolchainError(
                "circom_unavailable", f"{self.circom_path}: {e}"
            ) from e
        return (result.stdout or result.stderr).strip()

    def build_command(self, paths: "BuildPaths", options: CompileOptions) -> list[str]:
        command = [
            self.circom_path,
            paths.main_circuit,
            "--r1cs",
            "--sym",
        ]
        if not options.skip_wasm:
            command.append("--wasm")
        if options.c_witness:
            command.append("--c")
        command += [
            f"--O{options.optimization}",
            "--prime",
            options.prime,
            "-o",
            paths.circuit_build_dir,
            "-l",
            paths.circuits_dir,
        ]
        return command

    def compile(self, paths: "BuildPaths", options: CompileOptions):
        """
        Compile the workspace's main component.

        Output lines are forwarded to the compiler log as they arrive.

        Raises:
            ToolchainError: When circom is missing or exits non-zero.
        """
        os.makedirs(paths.circuit_build_dir, exist_ok=True)
        command = self.build_command(paths, options)
        self.log.info(f"Compiling circuit with {' '.join(command[1:])}")
        logging.debug(f"Running {' '.join(command)}")

        output: list[str] = []
        try:
            # trunk-ignore(bandit/B603)
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            raise ToolchainError(
                "circom_unavailable", f"{self.circom_path}: {e}"
            ) from e

        with process:
            for line in process.stdout:
                line = line.rstrip()
                if not line:
                    continue
                output.append(line)
                self._forward(line)
            returncode = process.wait()

        if returncode != 0:
            logging.error(f"circom exited with {returncode}")
            raise ToolchainError(
                "compile_failed",
                f"{self.circom_path} exited with {returncode}",
                stdout="\n".join(output),
            )
        self.log.info("Compiled successfully")

    def _forward(self, line: str):
        lowered = line.lower()
        if lowered.startswith("error") or "error[" in lowered:
            self.log.error(line)
        elif lowered.startswith("warning") or "warning[" in lowered:
            self.log.warn(line)
        else:
            self.log.info(line)
