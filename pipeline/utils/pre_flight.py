import os
import subprocess
import traceback
from collections import OrderedDict
from functools import partial
from typing import Iterable

# trunk-ignore(pylint/E0611)
import bittensor as bt

from build_layer.toolchain.snarkjs_handler import (
    snarkjs_executable,
    snarkjs_install_dir,
)

MIN_NODE_MAJOR_VERSION = 20


def run_preflight_checks(snarkjs_versions: Iterable[str], circom_paths: Iterable[str]):
    """
    This function executes a series of checks to ensure the toolchain a build
    needs is present before any request is processed.
    Checks:
    - Node.js >= 20 is installed
    - Each requested snarkjs version is installed
    - Each requested circom binary answers --version

    Raises:
        Exception: If any of the pre-flight checks fail.
    """

    preflight_checks = OrderedDict({"Ensuring Node.js version": ensure_nodejs_version})
    for version in snarkjs_versions:
        preflight_checks[f"Checking SnarkJS v{version} installation"] = partial(
            ensure_snarkjs_installed, version
        )
    for circom_path in circom_paths:
        preflight_checks[f"Checking {circom_path} installation"] = partial(
            ensure_circom_available, circom_path
        )

    bt.logging.info(" PreFlight | Running pre-flight checks")

    for check_name, check_function in preflight_checks.items():
        bt.logging.info(f" PreFlight | {check_name}")
        try:
            check_function()
            bt.logging.success(f" PreFlight | {check_name} completed successfully")
        except Exception as e:
            bt.logging.error(f"Failed {check_name.lower()}: {e}")
            bt.logging.debug(traceback.format_exc())
            raise

    bt.logging.info(" PreFlight | Pre-flight checks completed.")


def ensure_snarkjs_installed(version: str):
    """
    Ensure the given snarkjs version is installed in its own directory under
    the local .snarkjs directory.
    """
    executable = snarkjs_executable(version)
    try:
        # trunk-ignore(bandit/B603)
        subprocess.run(
            [executable, "r1cs", "info", "--help"],
            check=True,
            capture_output=True,
            text=True,
        )
        bt.logging.info(f"snarkjs@{version} is already installed.")
        return
    except subprocess.CalledProcessError:
        # snarkjs exits non-zero on --help for some subcommands
        if os.access(executable, os.X_OK):
            bt.logging.info(f"snarkjs@{version} is already installed.")
            return
    except FileNotFoundError:
        pass

    bt.logging.warning(f"snarkjs@{version} not found. Attempting to install...")
    install_dir = snarkjs_install_dir(version)
    try:
        os.makedirs(install_dir, exist_ok=True)
        # trunk-ignore(bandit/B603)
        # trunk-ignore(bandit/B607)
        subprocess.run(
            ["npm", "install", "--prefix", install_dir, f"snarkjs@{version}"],
            check=True,
        )
        bt.logging.info(f"snarkjs@{version} has been installed in {install_dir}.")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        bt.logging.error(f"Failed to install snarkjs@{version}: {e}")
        raise RuntimeError(
            f"snarkjs@{version} installation failed. Please install it manually."
        ) from e


def ensure_circom_available(circom_path: str):
    """
    Ensure a circom binary is on PATH.
    """
    try:
        # trunk-ignore(bandit/B603)
        result = subprocess.run(
            [circom_path, "--version"], check=True, capture_output=True, text=True
        )
        bt.logging.info(f"{circom_path} is installed: {result.stdout.strip()}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        bt.logging.error(f"Failed to verify {circom_path}: {e}")
        raise RuntimeError(
            f"{circom_path} is not available. Please install it manually."
        ) from e


def ensure_nodejs_version():
    """
    Ensure that Node.js version 20 or newer is installed.
    """
    NODE_LOG_PREFIX = "  NODE  | "

    try:
        # trunk-ignore(bandit/B607)
        node_version = subprocess.check_output(["node", "--version"]).decode().strip()
        # trunk-ignore(bandit/B607)
        npm_version = subprocess.check_output(["npm", "--version"]).decode().strip()
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        bt.logging.error(f"{NODE_LOG_PREFIX}Node.js is not installed.")
        raise RuntimeError(
            f"Node.js >= {MIN_NODE_MAJOR_VERSION} is required but not installed."
        ) from e

    if node_major_version(node_version) < MIN_NODE_MAJOR_VERSION:
        bt.logging.error(
            f"{NODE_LOG_PREFIX}Node.js {node_version} is too old, "
            f"please install Node.js >= {MIN_NODE_MAJOR_VERSION}"
        )
        raise RuntimeError(
            f"Node.js >= {MIN_NODE_MAJOR_VERSION} is required, found {node_version}."
        )
    bt.logging.info(
        NODE_LOG_PREFIX
        + f"Node.js version {node_version} and npm version {npm_version} are installed."
    )


def node_major_version(node_version: str) -> int:
    try:
        return int(node_version.lstrip("v").split(".")[0])
    except ValueError:
        return 0
