from __future__ import annotations

import base64
import binascii
import os
import re
from typing import Any, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from build_layer.errors import ValidationError
from constants import (
    BUILD_NAME,
    CIRCOM_PREFIX,
    CIRCOM_VERSIONS,
    DEFAULT_OPTIMIZATION,
    DEFAULT_PRIME,
    MAX_PTAU_SIZE,
    MIN_PTAU_SIZE,
    REQUEST_ID_PATTERN,
    SNARKJS_VERSIONS,
    SUPPORTED_PRIMES,
    SUPPORTED_PROTOCOLS,
    Protocols,
)

INCLUDE_PATTERN = re.compile(r'include "([^"]+)";')


class SourceFile(BaseModel):
    code: str


class CircuitDefinition(BaseModel):
    """
    The main component to instantiate: ``template(params)`` from ``file``
    exposing ``pubs`` as public signals.
    """

    file: str
    template: str
    params: list[Any] = Field(default_factory=list)
    pubs: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class BuildRequest(BaseModel):
    """
    A validated build action payload.

    Use ``BuildRequest.from_payload`` so malformed input surfaces as a
    ``ValidationError`` carrying the specific error code.
    """

    request_id: str = Field(..., alias="requestId")
    files: dict[str, SourceFile]
    circuit: CircuitDefinition
    circom_path: str = Field(..., alias="circomPath")
    protocol: str
    snarkjs_version: str = Field(SNARKJS_VERSIONS[0], alias="snarkjsVersion")
    prime: str = DEFAULT_PRIME
    final_zkey: Optional[str] = Field(None, alias="finalZkey")
    ptau_size: Optional[Union[int, str]] = Field(None, alias="ptauSize")
    optimization: int = DEFAULT_OPTIMIZATION
    c_witness: bool = Field(False, alias="cWitness")
    skip_wasm: bool = Field(False, alias="skipWasm")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @classmethod
    def from_payload(cls, payload: dict) -> BuildRequest:
        if not isinstance(payload, dict):
            raise ValidationError("invalid_payload")
        payload = dict(payload)

        request_id = payload.get("requestId")
        if not isinstance(request_id, str) or not re.match(
            REQUEST_ID_PATTERN, request_id
        ):
            raise ValidationError("invalid_requestId")

        snarkjs_version = payload.get("snarkjsVersion") or SNARKJS_VERSIONS[0]
        if snarkjs_version not in SNARKJS_VERSIONS:
            raise ValidationError("invalid_snarkjs_version")
        payload["snarkjsVersion"] = snarkjs_version

        if payload.get("protocol") not in SUPPORTED_PROTOCOLS:
            raise ValidationError("invalid_protocol")

        if not isinstance(payload.get("files"), dict):
            raise ValidationError("invalid_files")

        circom_path = payload.get("circomPath")
        if (
            not isinstance(circom_path, str)
            or not circom_path.startswith(CIRCOM_PREFIX)
            or circom_path[len(CIRCOM_PREFIX):] not in CIRCOM_VERSIONS
        ):
            raise ValidationError("invalid_circomPath")

        circuit = payload.get("circuit")
        if not isinstance(circuit, dict) or not isinstance(circuit.get("template"), str):
            raise ValidationError("invalid_circuit")

        prime = payload.get("prime") or DEFAULT_PRIME
        if prime not in SUPPORTED_PRIMES:
            raise ValidationError("invalid_prime")
        payload["prime"] = prime

        payload["optimization"] = _coerce_optimization(payload.get("optimization"))
        payload["ptauSize"] = _coerce_ptau_size(payload.get("ptauSize"))

        if prime != DEFAULT_PRIME and not isinstance(payload["ptauSize"], str):
            # Only the bn128 ceremony is mirrored; other curves need a supplied file
            raise ValidationError("ptau_generation_unsupported")

        # Other protocols ignore finalZkey, so only a groth16 key is checked
        final_zkey = payload.get("finalZkey")
        if payload["protocol"] == Protocols.GROTH16 and final_zkey is not None:
            _check_final_zkey(final_zkey)

        try:
            request = cls.model_validate(payload)
        except PydanticValidationError as e:
            field = e.errors()[0]["loc"][0] if e.errors() else "payload"
            raise ValidationError(_FIELD_CODES.get(field, "invalid_payload"), str(e)) from e

        request.resolve_generated_main()
        request.check_file_paths()
        return request

    @property
    def circuit_name(self) -> str:
        return self.circuit.template.lower()

    @property
    def circom_version(self) -> str:
        return self.circom_path[len(CIRCOM_PREFIX):]

    @property
    def has_https_zkey(self) -> bool:
        return bool(self.final_zkey) and self.final_zkey.startswith("https")

    @property
    def uses_supplied_zkey(self) -> bool:
        return self.protocol == Protocols.GROTH16 and bool(self.final_zkey)

    @property
    def ptau_url(self) -> Optional[str]:
        return self.ptau_size if isinstance(self.ptau_size, str) else None

    @property
    def forced_ptau_size(self) -> Optional[int]:
        return self.ptau_size if isinstance(self.ptau_size, int) else None

    @property
    def needs_local_ptau(self) -> bool:
        return self.prime != DEFAULT_PRIME

    def resolve_generated_main(self):
        """
        Point the circuit at the real source when the request carries a
        generated ``test/verify_circuit`` main file, and drop that file so it
        is not staged next to the main component the pipeline writes.
        """
        if self.circuit.file != f"test/{BUILD_NAME}":
            return
        generated = self.files.get(f"test/{BUILD_NAME}.circom")
        match = INCLUDE_PATTERN.search(generated.code) if generated else None
        if not match:
            raise ValidationError("invalid_directory_structure")
        # include "../<file>.circom";
        self.circuit.file = match.group(1)[3:-7]
        del self.files[f"test/{BUILD_NAME}.circom"]

    def check_file_paths(self):
        for path in self.files:
            normalized = os.path.normpath(path)
            if (
                not path
                or os.path.isabs(path)
                or normalized == ".."
                or normalized.startswith(".." + os.sep)
            ):
                raise ValidationError("invalid_files", f"Unsafe path {path}")

    def decoded_final_zkey(self) -> bytes:
        return base64.b64decode(self.final_zkey, validate=True)


_FIELD_CODES = {
    "files": "invalid_files",
    "circuit": "invalid_circuit",
    "finalZkey": "invalid_finalZkey_encoding",
    "cWitness": "invalid_payload",
    "skipWasm": "invalid_payload",
}


def _coerce_optimization(value) -> int:
    if value is None or value == "":
        return DEFAULT_OPTIMIZATION
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("invalid_optimization")
    if value not in (0, 1, 2):
        raise ValidationError("invalid_optimization")
    return value


def _coerce_ptau_size(value) -> Optional[Union[int, str]]:
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.startswith("https"):
        if not os.path.basename(urlparse(value).path):
            raise ValidationError("invalid_ptau_size")
        return value
    if isinstance(value, bool):
        raise ValidationError("invalid_ptau_size")
    try:
        size = int(value)
    except (TypeError, ValueError):
        raise ValidationError("invalid_ptau_size") from None
    if str(size) != str(value).strip() or not MIN_PTAU_SIZE <= size <= MAX_PTAU_SIZE:
        raise ValidationError("invalid_ptau_size")
    return size


def _check_final_zkey(value):
    if not isinstance(value, str) or not value:
        raise ValidationError("invalid_finalZkey_encoding")
    if value.startswith("https"):
        return
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("invalid_finalZkey_encoding") from None
