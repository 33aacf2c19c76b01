import json
import re
import sys
import traceback
from typing import Optional

# trunk-ignore(pylint/E0611)
from bittensor import logging

import cli_parser
from build_layer.blob_store import BlobStore
from build_layer.orchestrator import Orchestrator
from build_layer.prover_pool import ProverPool
from cli_parser import BuildConfig
from constants import (
    CIRCOM_PREFIX,
    CIRCOM_VERSIONS,
    REQUEST_ID_PATTERN,
    RESPONSE_KEY_PREFIX,
    SNARKJS_VERSIONS,
)
from handler import handle_event
from utils import run_preflight_checks


def response_key(request_id: str) -> str:
    return f"{RESPONSE_KEY_PREFIX}/{request_id}.json"


def read_payload(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def requested_toolchain(payload: dict) -> tuple[list[str], list[str]]:
    """
    The allow-listed snarkjs versions and circom binaries a payload asks for.

    Anything outside the allow-lists is left for request validation to reject.
    """
    snarkjs_version = payload.get("snarkjsVersion") or SNARKJS_VERSIONS[0]
    circom_path = payload.get("circomPath")
    snarkjs_versions = [snarkjs_version] if snarkjs_version in SNARKJS_VERSIONS else []
    circom_paths = (
        [circom_path]
        if isinstance(circom_path, str)
        and circom_path.startswith(CIRCOM_PREFIX)
        and circom_path[len(CIRCOM_PREFIX):] in CIRCOM_VERSIONS
        else []
    )
    return snarkjs_versions, circom_paths


def run(
    payload: dict,
    store: BlobStore,
    build_config: BuildConfig,
    preflight: bool = True,
) -> dict:
    """
    Run one build payload and publish the handler response next to the
    build's status log.
    """
    if preflight:
        run_preflight_checks(*requested_toolchain(payload))

    orchestrator = Orchestrator(
        store,
        pool=ProverPool(max_concurrent=build_config.max_provers),
        base_dir=build_config.temp_folder,
        keep_workspace=build_config.keep_workspace,
    )
    response = handle_event({"payload": payload}, orchestrator)

    request_id = payload.get("requestId")
    if isinstance(request_id, str) and re.match(REQUEST_ID_PATTERN, request_id):
        store.put_json(response_key(request_id), response)
    else:
        logging.warning("Response not uploaded, the payload has no valid requestId")
    return response


def main(args: Optional[list[str]] = None) -> int:
    config = cli_parser.init_config(args)
    if not config.payload:
        cli_parser.parser.print_help()
        return 2

    build_config = BuildConfig.from_namespace(config)
    try:
        payload = read_payload(config.payload)
        store = BlobStore.from_config(build_config)
        response = run(payload, store, build_config, preflight=not config.no_preflight)
    except Exception as e:
        logging.error(f"Runner failed: {e}")
        logging.debug(traceback.format_exc())
        return 1

    logging.info(f"Response: {json.dumps(response)}")
    return 0 if response["statusCode"] == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
