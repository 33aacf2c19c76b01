from __future__ import annotations
from abc import ABC, abstractmethod


class ProvingSystemHandler(ABC):
    """
    An abstract base class for proving system handlers.

    A handler is bound to exactly one library version for its whole lifetime.
    """

    version: str

    @abstractmethod
    def constraint_count(self, r1cs_path: str) -> int:
        """
        Read the number of constraints from a compiled constraint system.

        Args:
            r1cs_path (str): Path to the ``.r1cs`` file.
        """

    @abstractmethod
    def new_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str):
        """
        Generate the genesis Groth16 proving key.
        """

    @abstractmethod
    def contribute(
        self, zkey_in: str, zkey_out: str, name: str, entropy: bytes
    ):
        """
        Apply one randomized contribution to a Groth16 proving key.

        Args:
            zkey_in (str): The current key.
            zkey_out (str): Where to write the contributed key.
            name (str): Label recorded in the key's contribution list.
            entropy (bytes): Fresh randomness for this contribution.
        """

    @abstractmethod
    def setup(self, protocol: str, r1cs_path: str, ptau_path: str, zkey_path: str):
        """
        One step setup for protocols without a circuit specific ceremony
        (plonk, fflonk).
        """

    @abstractmethod
    def verify_zkey(self, r1cs_path: str, ptau_path: str, zkey_path: str) -> bool:
        """
        Check a proving key against the constraint system and PTAU.

        Returns:
            bool: True when the key matches.
        """

    @abstractmethod
    def export_verification_key(self, zkey_path: str) -> dict:
        """
        Export the verification key of a proving key.
        """

    @abstractmethod
    def export_solidity_verifier(self, zkey_path: str) -> str:
        """
        Generate the on-chain verifier source for a proving key.
        """
