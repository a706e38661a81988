"""Lambda handler for Auto PR Bot.

One function serves three kinds of invocation:
- Internal task envelopes sent by LambdaInvokeDispatcher run the process
  phase
- API Gateway requests for /status/{requestId} read a progress record
- Any other API Gateway request is a change request for the accept phase

Services are built per invocation and closed after it.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.autopr.config import get_settings
from src.autopr.intake.dispatcher import is_task_envelope
from src.autopr.intake.models import BridgeResponse, DispatchTask
from src.autopr.services import ServiceContainer, build_services

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)


STATUS_PATH_PREFIX = "/status"

CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "OPTIONS,POST,GET",
}


class InvalidBodyError(ValueError):
    """Raised when an API Gateway body is not valid JSON."""


def build_lambda_services() -> ServiceContainer:
    return build_services(get_settings())


def _http_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": dict(CORS_HEADERS),
        "body": json.dumps(body),
    }


def _from_bridge(result: BridgeResponse) -> Dict[str, Any]:
    return _http_response(result.status_code, result.body)


def _request_path(event: Dict[str, Any]) -> str:
    return event.get("path") or event.get("rawPath") or ""


def _request_method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method", "")
    return method.upper()


def _source_ip(event: Dict[str, Any]) -> Optional[str]:
    context = event.get("requestContext") or {}
    return (context.get("identity") or {}).get("sourceIp") or (
        context.get("http") or {}
    ).get("sourceIp")


def _status_request_id(event: Dict[str, Any]) -> Optional[str]:
    params = event.get("pathParameters") or {}
    if params.get("requestId"):
        return params["requestId"]
    path = _request_path(event).rstrip("/")
    prefix = STATUS_PATH_PREFIX + "/"
    if path.startswith(prefix):
        return path[len(prefix):]
    return None


def _parse_body(event: Dict[str, Any]) -> Any:
    body = event.get("body")
    if body is None:
        return None
    try:
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        return json.loads(body)
    except ValueError as e:
        raise InvalidBodyError(f"Invalid JSON: {e}") from e


async def _process_task(services: ServiceContainer, task_payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        task = DispatchTask.model_validate(task_payload)
    except ValidationError as e:
        logger.error(f"Discarding malformed dispatch task: {e}")
        return {"status": "invalid_task", "error": str(e)}

    result = await services.bridge.process(task)
    return {
        "status": result.outcome.value,
        "requestId": result.request_id,
        "prUrl": result.pr_url,
        "error": result.error,
    }


async def _handle(event: Dict[str, Any], services: ServiceContainer) -> Dict[str, Any]:
    if is_task_envelope(event):
        logger.info("Process phase invoked")
        return await _process_task(services, event["task"])

    if _request_method(event) == "OPTIONS":
        return _http_response(200, {})

    if _request_path(event).startswith(STATUS_PATH_PREFIX):
        return _from_bridge(await services.bridge.status(_status_request_id(event)))

    try:
        payload = _parse_body(event)
    except InvalidBodyError as e:
        return _http_response(400, {"error": str(e)})

    return _from_bridge(await services.bridge.accept(payload, _source_ip(event)))


async def _run(event: Dict[str, Any]) -> Dict[str, Any]:
    services = build_lambda_services()
    try:
        return await _handle(event, services)
    finally:
        await services.aclose()


def handler(event, context):
    """
    AWS Lambda entry point.

    Args:
        event: API Gateway proxy event or internal task envelope
        context: Lambda context object

    Returns:
        dict: API Gateway proxy response, or a run summary for task envelopes
    """
    try:
        return asyncio.run(_run(event or {}))
    except Exception as e:
        logger.error(f"Lambda execution failed: {str(e)}", exc_info=True)
        return _http_response(500, {"error": "Internal server error"})
