"""
Selection and download of the universal setup (powers of tau) file.

Precedence:
1. a caller supplied URL, downloaded verbatim,
2. a caller forced size, mapped to the Hermez ceremony file,
3. the smallest ceremony file that fits the circuit's constraint count.
"""

from __future__ import annotations

import hashlib
import os
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional
from urllib.parse import urlparse

from bittensor import logging

from build_layer.errors import ConstraintSizeError, PtauSizeError, ValidationError
from constants import MAX_PTAU_SIZE, MIN_PTAU_SIZE, PTAU_URL_BASE
from utils.files import download_file

if TYPE_CHECKING:
    from build_layer.status_reporter import StatusReporter
    from protocol import BuildRequest

PTAU_MAGIC = b"ptau"
PTAU_HEADER_SECTION = 1


def get_ptau_name(p: int) -> str:
    """
    Name of the Hermez ceremony file for size ``p``.

    Sizes below 8 share the size 8 file; there is nothing above 28.

    Raises:
        PtauSizeError: When ``p`` is greater than 28.
    """
    if p < 8:
        suffix = "_08"
    elif p < 10:
        suffix = f"_0{p}"
    elif p < 28:
        suffix = f"_{p}"
    elif p == 28:
        suffix = ""
    else:
        raise PtauSizeError("no_ptau", "No PTAU for that many constraints!")
    return f"powersOfTau28_hez_final{suffix}.ptau"


def ptau_url(ptau_name: str) -> str:
    return f"{PTAU_URL_BASE}/{ptau_name}"


def ptau_size_for_constraints(constraints: int) -> int:
    """
    Smallest p such that 2^p >= constraints, never below 8.

    Raises:
        ConstraintSizeError: When the circuit needs more than 2^28.
    """
    # (n - 1).bit_length() == ceil(log2(n)) for n >= 1
    size = max((max(constraints, 1) - 1).bit_length(), MIN_PTAU_SIZE)
    if size > MAX_PTAU_SIZE:
        raise ConstraintSizeError("too_many_constraints")
    return size


def read_ptau_power(ptau_path: str) -> int:
    """
    Read the power (log2 of the capacity) from a ptau file header.
    """
    with open(ptau_path, "rb") as f:
        if f.read(4) != PTAU_MAGIC:
            raise ValidationError("invalid_ptau_file", f"{ptau_path} is not a ptau file")
        _version, n_sections = struct.unpack("<II", f.read(8))
        for _ in range(n_sections):
            section_type, section_size = struct.unpack("<IQ", f.read(12))
            if section_type != PTAU_HEADER_SECTION:
                f.seek(section_size, os.SEEK_CUR)
                continue
            (n8,) = struct.unpack("<I", f.read(4))
            f.seek(n8, os.SEEK_CUR)
            (power,) = struct.unpack("<I", f.read(4))
            return power
    raise ValidationError("invalid_ptau_file", f"{ptau_path} has no header section")


@dataclass
class PtauSelection:
    path: str
    name: str
    source: str
    size: Optional[int] = None
    url: Optional[str] = None

    @property
    def manifest_value(self):
        return self.url if self.url else self.size


class PtauSelector:
    """
    Resolves, fetches and checks the PTAU for one build.

    Args:
        cache_dir (str): Where ceremony files are cached across builds.
        status (StatusReporter): Build status log.
        local_dir (Optional[str]): Workspace ``ptau/`` directory; supplied
            files land here so they ship with the package.
        downloader: Callable with the signature of ``download_file``.
    """

    def __init__(
        self,
        cache_dir: str,
        status: "StatusReporter",
        local_dir: Optional[str] = None,
        downloader: Callable[..., str] = download_file,
    ):
        self.cache_dir = cache_dir
        self.status = status
        self.local_dir = local_dir
        self.downloader = downloader

    def select(self, request: "BuildRequest", constraints: int) -> PtauSelection:
        if request.ptau_url:
            selection = self._from_url(request.ptau_url)
        elif request.forced_ptau_size is not None:
            selection = self._from_ceremony(request.forced_ptau_size, "forced")
        else:
            size = ptau_size_for_constraints(constraints)
            self.status.log("Downloading hermez PTAU...")
            selection = self._from_ceremony(size, "computed")

        self._check_capacity(selection, constraints)
        logging.info(f"Using PTAU {selection.name} ({selection.source})")
        return selection

    def _from_url(self, url: str) -> PtauSelection:
        name = os.path.basename(urlparse(url).path)
        if self.local_dir:
            path = os.path.join(self.local_dir, name)
        else:
            # Same basename from different hosts must not share a cache entry
            digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
            path = os.path.join(self.cache_dir, f"{digest}-{name}")
        self.status.log(f"Downloading {url}...")
        self.downloader(url, path, reuse_existing=True)
        return PtauSelection(path=path, name=name, source="url", url=url)

    def _from_ceremony(self, size: int, source: str) -> PtauSelection:
        name = get_ptau_name(size)
        path = os.path.join(self.cache_dir, name)
        if source == "forced":
            self.status.log(f"Downloading {name}...")
        self.downloader(ptau_url(name), path, reuse_existing=True)
        return PtauSelection(path=path, name=name, source=source, size=size)

    def _check_capacity(self, selection: PtauSelection, constraints: int):
        if selection.size is None:
            selection.size = read_ptau_power(selection.path)
        if 2 ** selection.size < constraints:
            self.status.log(
                f"PTAU 2^{selection.size} is too small for {constraints} constraints"
            )
            raise ConstraintSizeError(
                "ptau_too_small",
                f"2^{selection.size} < {constraints} constraints",
            )
