import json
import traceback
from typing import TYPE_CHECKING

from bittensor import logging

from build_layer.errors import BuildError

if TYPE_CHECKING:
    from build_layer.orchestrator import Orchestrator

BUILD_ACTION = "build"


def success_response(package_name: str) -> dict:
    return {"statusCode": 200, "body": {"packageName": package_name}}


def error_response(error: Exception) -> dict:
    message = error.code if isinstance(error, BuildError) else str(error)
    return {
        "statusCode": 500,
        "body": {"errorType": "error", "errorMessage": message},
    }


def handle_event(event: dict, orchestrator: "Orchestrator") -> dict:
    """
    Dispatch one request event to its action.

    Events either carry ``payload`` directly or wrap the whole event as a JSON
    string under ``body`` (HTTP gateway style).

    Returns:
        dict: ``{statusCode, body}``. Failures never raise, they become a 500
        response carrying the error code.
    """
    try:
        if isinstance(event, dict) and "body" in event:
            event = json.loads(event["body"])
        payload = event.get("payload") if isinstance(event, dict) else None
        action = payload.get("action") if isinstance(payload, dict) else None

        if action == BUILD_ACTION:
            result = orchestrator.build(payload)
            return success_response(result.package_name)
        raise BuildError("invalid_command")
    except Exception as e:
        logging.error(f"Request failed: {e}")
        logging.debug(traceback.format_exc())
        return error_response(e)
