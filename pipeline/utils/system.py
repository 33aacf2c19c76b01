import os
import shutil
import secrets
from bittensor import logging
from constants import TEMP_FOLDER


def get_temp_folder() -> str:
    if not os.path.exists(TEMP_FOLDER):
        os.makedirs(TEMP_FOLDER, exist_ok=True)
    return TEMP_FOLDER


def remove_path(path: str):
    """
    Remove a file, link or directory tree if it exists.
    """
    if not os.path.lexists(path):
        return
    try:
        if os.path.isfile(path) or os.path.islink(path):
            os.unlink(path)
        elif os.path.isdir(path):
            shutil.rmtree(path)
    except OSError as e:
        logging.error(f"Error cleaning up {path}: {e}")
        raise


def unique_name(prefix: str) -> str:
    """
    Build a package name that is unique across builds.

    Args:
        prefix (str): Deterministic leading part, usually the circuit name.

    Returns:
        str: ``<prefix>-<random hex suffix>``
    """
    return f"{prefix}-{secrets.token_hex(6)}"
