from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from bittensor import logging

from constants import BUILD_KEY_PREFIX
from utils.files import zip_directory

if TYPE_CHECKING:
    from build_layer.blob_store import BlobStore
    from build_layer.workspace import BuildPaths
    from protocol import BuildRequest

SOURCE_ARCHIVE_KEY = "source.zip"
VERIFIER_KEY = "verifier.sol"
PACKAGE_ARCHIVE_KEY = "pkg.zip"
MANIFEST_KEY = "info.json"


def build_key(package_name: str, name: str) -> str:
    return f"{BUILD_KEY_PREFIX}/{package_name}/{name}"


@dataclass
class PackageSizes:
    solidity: int
    source: int
    package: int


class ArtifactPackager:
    """
    Archives a finished workspace and uploads it.

    Upload order is source, verifier, package and finally ``info.json``, so a
    reader that sees the manifest can rely on the other three objects being
    present.
    """

    def __init__(
        self,
        store: "BlobStore",
        paths: "BuildPaths",
    ):
        self.store = store
        self.paths = paths

    def key(self, name: str) -> str:
        return build_key(self.paths.package_name, name)

    def package(
        self,
        request: "BuildRequest",
        ptau: Union[int, str],
    ) -> dict:
        """
        Archive and upload every build artifact.

        Args:
            request (BuildRequest): The validated request.
            ptau (Union[int, str]): Chosen PTAU size exponent, or the caller
                supplied URL.

        Returns:
            dict: The manifest written to ``info.json``.
        """
        source_size = zip_directory(self.paths.circuits_dir, self.paths.source_archive)
        self._upload(SOURCE_ARCHIVE_KEY, self.paths.source_archive)

        solidity_size = os.path.getsize(self.paths.contract)
        self._upload(VERIFIER_KEY, self.paths.contract)

        package_size = zip_directory(self.paths.package_dir, self.paths.package_archive)
        self._upload(PACKAGE_ARCHIVE_KEY, self.paths.package_archive)

        manifest = build_manifest(
            request,
            ptau,
            PackageSizes(solidity=solidity_size, source=source_size, package=package_size),
        )
        with open(self.paths.info, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)
        self._upload(MANIFEST_KEY, self.paths.info)

        logging.success(
            f"Uploaded {self.paths.package_name} ({package_size} bytes packaged)"
        )
        return manifest

    def _upload(self, name: str, file_path: str):
        key = self.key(name)

        def _progress(uploaded: int, total: int):
            logging.debug(f"Uploading {key}: {uploaded}/{total} bytes")

        self.store.upload_file(key, file_path, progress=_progress)


def build_manifest(
    request: "BuildRequest",
    ptau: Union[int, str],
    sizes: PackageSizes,
) -> dict:
    manifest: dict[str, Optional[object]] = {
        "requestId": request.request_id,
        "circomPath": request.circom_path,
        "snarkjsVersion": request.snarkjs_version,
        "protocol": request.protocol,
        "circuit": request.circuit.model_dump(),
        "ptau": ptau,
        "soliditySize": sizes.solidity,
        "sourceSize": sizes.source,
        "pkgSize": sizes.package,
    }
    if request.has_https_zkey:
        manifest["finalZKey"] = request.final_zkey
    return manifest
