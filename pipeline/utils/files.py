from __future__ import annotations

import os
import tempfile
import zipfile

import requests
from bittensor import logging

from build_layer.errors import DownloadError
from constants import DOWNLOAD_CHUNK_SIZE, FIVE_MINUTES


def download_file(
    url: str,
    file_path: str,
    timeout: float = FIVE_MINUTES * 2,
    reuse_existing: bool = False,
) -> str:
    """
    Stream a remote file to disk.

    The body is written to a uniquely named ``.part`` file beside
    ``file_path`` and renamed into place once complete, so ``file_path`` only
    ever holds a finished download even when several builds fetch the same
    file at once.

    Args:
        url (str): Source URL.
        file_path (str): Destination path.
        timeout (float): Connect/read timeout passed to requests.
        reuse_existing (bool): Skip the request when ``file_path`` exists, and
            keep a copy that another download finished in the meantime.

    Returns:
        str: The destination path.

    Raises:
        DownloadError: On a non-200 status or any transport failure.
    """
    if reuse_existing and os.path.isfile(file_path):
        logging.debug(f"Reusing {file_path}, already downloaded")
        return file_path

    directory = os.path.dirname(file_path) or "."
    os.makedirs(directory, exist_ok=True)
    # Self-signed certificates are accepted for local test servers only
    verify = not url.startswith("https://localhost:")

    logging.debug(f"Downloading {url} to {file_path}...")
    partial = tempfile.NamedTemporaryFile(
        dir=directory,
        prefix=f"{os.path.basename(file_path)}.",
        suffix=".part",
        delete=False,
    )
    try:
        with partial, requests.get(
            url, timeout=timeout, stream=True, verify=verify
        ) as response:
            if response.status_code != 200:
                raise DownloadError(
                    "download_failed",
                    f"Failed to download {url}: Status code {response.status_code}",
                )
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if chunk:
                    partial.write(chunk)
    except requests.RequestException as e:
        _discard(partial.name)
        logging.error(f"Failed to download {url} to {file_path}: {e}")
        raise DownloadError("download_failed", f"{url}: {e}") from e
    except Exception:
        _discard(partial.name)
        raise

    if reuse_existing and os.path.isfile(file_path):
        _discard(partial.name)
        logging.debug(f"Reusing {file_path}, finished by a concurrent download")
        return file_path

    os.replace(partial.name, file_path)
    logging.debug(f"Downloaded {os.path.getsize(file_path)} bytes to {file_path}")
    return file_path


def _discard(path: str):
    if os.path.exists(path):
        os.remove(path)


def zip_directory(source_dir: str, out_path: str) -> int:
    """
    Compress the contents of ``source_dir`` into a zip archive.

    Entries are stored relative to ``source_dir`` (the directory itself is not
    a path component).

    Returns:
        int: Size of the written archive in bytes.
    """
    with zipfile.ZipFile(
        out_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
    ) as archive:
        for root, dirs, files in os.walk(source_dir):
            dirs.sort()
            for name in sorted(files):
                full_path = os.path.join(root, name)
                arcname = os.path.relpath(full_path, source_dir)
                archive.write(full_path, arcname)
    size = os.path.getsize(out_path)
    logging.trace(f"{size} total bytes written to {out_path}")
    return size
