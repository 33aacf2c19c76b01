from .pre_flight import (
    run_preflight_checks,
    ensure_snarkjs_installed,
    ensure_circom_available,
)
from .system import get_temp_folder, remove_path, unique_name
from .files import download_file, zip_directory
from .periodic import PeriodicWorker

__all__ = [
    "run_preflight_checks",
    "ensure_snarkjs_installed",
    "ensure_circom_available",
    "get_temp_folder",
    "remove_path",
    "unique_name",
    "download_file",
    "zip_directory",
    "PeriodicWorker",
]
