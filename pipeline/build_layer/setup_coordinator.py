from __future__ import annotations

import binascii
import os
import secrets
from enum import Enum
from typing import TYPE_CHECKING, Callable

from bittensor import logging

from build_layer.errors import InvalidZkeyError, ValidationError
from constants import (
    BUILD_NAME,
    ENTROPY_BYTES,
    GROTH16_CONTRIBUTIONS,
    Protocols,
)
from utils.files import download_file
from utils.system import remove_path

if TYPE_CHECKING:
    from build_layer.status_reporter import StatusReporter
    from build_layer.toolchain.base_handler import ProvingSystemHandler
    from build_layer.workspace import BuildPaths
    from protocol import BuildRequest


class SetupState(str, Enum):
    """
    States of the proving key setup.
    """

    PENDING = "pending"
    AWAITING_VERIFICATION = "awaiting_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"
    SINGLE_SHOT_SETUP = "single_shot_setup"
    DONE = "done"
    GENESIS = "genesis"
    CONTRIBUTING = "contributing"
    FINALIZED = "finalized"
    FAILED = "failed"

    def __str__(self):
        return self.value


TERMINAL_STATES = {
    SetupState.VERIFIED,
    SetupState.REJECTED,
    SetupState.DONE,
    SetupState.FINALIZED,
    SetupState.FAILED,
}


class SetupCoordinator:
    """
    Produces the final proving key for one build.

    Three paths:
    - a caller supplied Groth16 key is fetched and verified,
    - plonk and fflonk run their one step setup,
    - Groth16 without a supplied key runs a genesis step followed by a fixed
      number of randomized contributions.

    Keys are only ever written to step or temporary paths and renamed onto
    ``paths.pkey`` on success, so the canonical path exists iff setup finished.
    Only one contribution is applied, which is not a multi-party ceremony.
    """

    def __init__(
        self,
        prover: "ProvingSystemHandler",
        paths: "BuildPaths",
        status: "StatusReporter",
        downloader: Callable[..., str] = download_file,
        contributions: int = GROTH16_CONTRIBUTIONS,
    ):
        self.prover = prover
        self.paths = paths
        self.status = status
        self.downloader = downloader
        self.contributions = contributions
        self.state = SetupState.PENDING
        self.history: list[tuple[SetupState, int | None]] = []
        self.contribution_step: int | None = None

    def _transition(self, state: SetupState, step: int | None = None):
        logging.debug(f"Setup {self.state} -> {state}")
        self.state = state
        self.contribution_step = step
        self.history.append((state, step))

    @property
    def supplied_zkey_path(self) -> str:
        return f"{self.paths.pkey}.supplied"

    @property
    def single_shot_zkey_path(self) -> str:
        return f"{self.paths.pkey}.partial"

    def run(self, request: "BuildRequest", ptau_path: str) -> str:
        """
        Drive the setup to a terminal state.

        Returns:
            str: Path of the final proving key.

        Raises:
            InvalidZkeyError: The supplied key does not match the circuit.
            DownloadError: The supplied key could not be fetched.
            ToolchainError: snarkjs failed.
        """
        if self.state is not SetupState.PENDING:
            raise RuntimeError(f"Setup already ran ({self.state})")
        try:
            if request.uses_supplied_zkey:
                self._verify_supplied(request, ptau_path)
            elif request.protocol == Protocols.GROTH16:
                self._contribution_chain(ptau_path)
            else:
                self._single_shot(request.protocol, ptau_path)
        except Exception:
            if self.state not in TERMINAL_STATES:
                self._transition(SetupState.FAILED)
            self._discard_intermediates()
            raise
        return self.paths.pkey

    def _verify_supplied(self, request: "BuildRequest", ptau_path: str):
        self._transition(SetupState.AWAITING_VERIFICATION)
        target = self.supplied_zkey_path
        if request.has_https_zkey:
            self.status.log(f"Downloading finalZkey {request.final_zkey}...")
            self.downloader(request.final_zkey, target)
        else:
            try:
                key_data = request.decoded_final_zkey()
            except (binascii.Error, ValueError) as e:
                raise ValidationError("invalid_finalZkey_encoding") from e
            with open(target, "wb") as f:
                f.write(key_data)

        self.status.log("Verifying finalZkey...")
        if not self.prover.verify_zkey(self.paths.r1cs, ptau_path, target):
            self._transition(SetupState.REJECTED)
            self.status.log("Invalid finalZkey!")
            raise InvalidZkeyError("invalid_finalZkey")

        os.replace(target, self.paths.pkey)
        self._transition(SetupState.VERIFIED)

    def _single_shot(self, protocol: str, ptau_path: str):
        self._transition(SetupState.SINGLE_SHOT_SETUP)
        self.status.log("Circuit setup...")
        target = self.single_shot_zkey_path
        self.prover.setup(protocol, self.paths.r1cs, ptau_path, target)
        os.replace(target, self.paths.pkey)
        self._transition(SetupState.DONE)

    def _contribution_chain(self, ptau_path: str):
        self.status.log("Groth16 setup with random entropy...")
        self._transition(SetupState.GENESIS, 0)
        current = self.paths.step_zkey(0)
        self.prover.new_zkey(self.paths.r1cs, ptau_path, current)

        for step in range(1, self.contributions + 1):
            self._transition(SetupState.CONTRIBUTING, step)
            following = self.paths.step_zkey(step)
            self.prover.contribute(
                current,
                following,
                f"{BUILD_NAME}_{step}",
                secrets.token_bytes(ENTROPY_BYTES),
            )
            os.remove(current)
            current = following

        os.replace(current, self.paths.pkey)
        self._transition(SetupState.FINALIZED, self.contributions)

    def _discard_intermediates(self):
        for step in range(self.contributions + 1):
            remove_path(self.paths.step_zkey(step))
        remove_path(self.supplied_zkey_path)
        remove_path(self.single_shot_zkey_path)
