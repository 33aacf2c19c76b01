import argparse
import os
from dataclasses import dataclass
from typing import Optional

import bittensor as bt

from constants import MAX_CONCURRENT_PROVERS, TEMP_FOLDER

parser: Optional[argparse.ArgumentParser] = None
config: Optional[argparse.Namespace] = None

DESCRIPTION = (
    "Circuit build runner. Compiles a circom circuit, runs its trusted setup "
    "and uploads the resulting verifier package."
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=DESCRIPTION, allow_abbrev=False)

    parser.add_argument(
        "payload",
        nargs="?",
        default=None,
        help="Path to a JSON build payload.",
    )
    parser.add_argument(
        "--bucket",
        type=str,
        default=os.getenv("BLOB_BUCKET"),
        help="Bucket receiving build artifacts and status logs.",
    )
    parser.add_argument(
        "--region",
        type=str,
        default=os.getenv("BB_REGION"),
        help="Blob store region.",
    )
    parser.add_argument(
        "--endpoint-url",
        type=str,
        default=os.getenv("BB_ENDPOINT"),
        help="Endpoint of an S3 compatible blob store (optional).",
    )
    parser.add_argument(
        "--access-key",
        type=str,
        default=os.getenv("BB_ACCESS_KEY_ID"),
        help="Blob store access key id.",
    )
    parser.add_argument(
        "--secret-key",
        type=str,
        default=os.getenv("BB_SECRET_ACCESS_KEY"),
        help="Blob store secret access key.",
    )
    parser.add_argument(
        "--temp-folder",
        type=str,
        default=TEMP_FOLDER,
        help="Where build workspaces and cached PTAU files are kept.",
    )
    parser.add_argument(
        "--keep-workspace",
        default=False,
        action="store_true",
        help="Do not delete the build workspace when the build ends.",
    )
    parser.add_argument(
        "--max-provers",
        type=int,
        default=MAX_CONCURRENT_PROVERS,
        help="Maximum number of builds running snarkjs at once.",
    )
    parser.add_argument(
        "--no-preflight",
        default=bool(os.getenv("PIPELINE_NO_PREFLIGHT", False)),
        action="store_true",
        help="Skip the toolchain pre-flight checks.",
    )
    parser.add_argument(
        "--debug",
        default=False,
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--trace",
        default=False,
        action="store_true",
        help="Enable trace logging.",
    )
    return parser


def init_config(args: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Initialize the configuration for the runner.
    The configuration itself is stored in the global variable `config`. Kinda singleton pattern.
    """
    global parser
    global config

    parser = build_parser()
    config = parser.parse_args(args)

    os.makedirs(config.temp_folder, exist_ok=True)

    if config.trace:
        bt.logging.set_trace(True)
    elif config.debug:
        bt.logging.set_debug(True)

    if not config.bucket:
        bt.logging.warning("No bucket configured, set BLOB_BUCKET or pass --bucket")

    return config


@dataclass
class BuildConfig:
    """
    Values the build pipeline reads from the runner configuration.
    """

    bucket: Optional[str]
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    temp_folder: str = TEMP_FOLDER
    keep_workspace: bool = False
    max_provers: int = MAX_CONCURRENT_PROVERS

    @classmethod
    def from_namespace(cls, namespace: argparse.Namespace) -> "BuildConfig":
        return cls(
            bucket=namespace.bucket,
            region=namespace.region,
            endpoint_url=namespace.endpoint_url,
            access_key=namespace.access_key,
            secret_key=namespace.secret_key,
            temp_folder=namespace.temp_folder,
            keep_workspace=namespace.keep_workspace,
            max_provers=namespace.max_provers,
        )
