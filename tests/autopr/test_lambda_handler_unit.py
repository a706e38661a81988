"""Unit tests for the Lambda handler routing.

build_lambda_services is patched to return services wired against the
in-memory DynamoDB fake and a mocked Lambda client.
"""

import base64
import json
from unittest.mock import MagicMock

import httpx
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from prometheus_client import CollectorRegistry

from src.autopr import lambda_handler
from src.autopr.config import AutoPRSettings, DispatchMode
from src.autopr.intake.dispatcher import TASK_SOURCE
from src.autopr.services import build_services


REPO_URL = "https://github.com/acme/widgets"


@pytest.fixture
def lambda_client():
    client = MagicMock()
    client.invoke.return_value = {"StatusCode": 202}
    return client


@pytest.fixture
def services(tmp_path, fake_dynamodb, lambda_client, monkeypatch):
    settings = AutoPRSettings(
        github_token="ghp_test",
        openai_api_key="sk-test",
        dispatch_mode=DispatchMode.LAMBDA,
        aws_lambda_function_name="auto-pr-bot",
        workspace_base_path=str(tmp_path),
    )
    container = build_services(
        settings,
        dynamodb_client=fake_dynamodb,
        lambda_client=lambda_client,
        github_transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        chat_model=FakeListChatModel(
            responses=['{"isValid": false, "reason": "Not a code change"}']
        ),
        metrics_registry=CollectorRegistry(),
    )
    monkeypatch.setattr(lambda_handler, "build_lambda_services", lambda: container)
    return container


def _api_event(method="POST", path="/process", body=None, **extra):
    event = {
        "httpMethod": method,
        "path": path,
        "requestContext": {"identity": {"sourceIp": "203.0.113.7"}},
        "body": json.dumps(body) if body is not None else None,
    }
    event.update(extra)
    return event


def _body(response):
    return json.loads(response["body"])


def test_change_request_is_accepted_and_dispatched(services, lambda_client, fake_dynamodb):
    response = lambda_handler.handler(
        _api_event(body={"repositoryUrl": REPO_URL, "modificationPrompt": "Add docs"}),
        None,
    )

    assert response["statusCode"] == 202
    assert response["headers"]["Access-Control-Allow-Origin"] == "*"
    request_id = _body(response)["requestId"]

    payload = json.loads(lambda_client.invoke.call_args.kwargs["Payload"])
    assert payload["source"] == TASK_SOURCE
    assert payload["task"]["requestId"] == request_id

    # One rate-limit lookup for the caller's address
    assert fake_dynamodb.query_calls == 1


def test_base64_body_is_decoded(services):
    raw = json.dumps({"repositoryUrl": REPO_URL, "modificationPrompt": "Add docs"})
    event = _api_event(isBase64Encoded=True)
    event["body"] = base64.b64encode(raw.encode("utf-8")).decode("ascii")

    response = lambda_handler.handler(event, None)

    assert response["statusCode"] == 202


def test_invalid_json_is_400(services):
    event = _api_event()
    event["body"] = "{not json"

    response = lambda_handler.handler(event, None)

    assert response["statusCode"] == 400
    assert _body(response)["error"].startswith("Invalid JSON")


def test_options_preflight(services):
    response = lambda_handler.handler(_api_event(method="OPTIONS"), None)

    assert response["statusCode"] == 200
    assert response["headers"]["Access-Control-Allow-Methods"] == "OPTIONS,POST,GET"


def test_status_by_path_parameter(services):
    accepted = lambda_handler.handler(
        _api_event(body={"repositoryUrl": REPO_URL, "modificationPrompt": "Add docs"}),
        None,
    )
    request_id = _body(accepted)["requestId"]

    response = lambda_handler.handler(
        _api_event(
            method="GET",
            path=f"/status/{request_id}",
            pathParameters={"requestId": request_id},
        ),
        None,
    )

    assert response["statusCode"] == 200
    assert _body(response)["status"] == "pending"


def test_status_from_http_api_raw_path(services):
    event = {
        "rawPath": "/status/unknown-id",
        "requestContext": {"http": {"method": "GET", "sourceIp": "203.0.113.7"}},
    }

    response = lambda_handler.handler(event, None)

    assert response["statusCode"] == 404


def test_status_without_id_is_400(services):
    response = lambda_handler.handler(_api_event(method="GET", path="/status"), None)

    assert response["statusCode"] == 400
    assert _body(response) == {"error": "Missing requestId in path"}


def test_task_envelope_runs_process_phase(services):
    envelope = {
        "source": TASK_SOURCE,
        "task": {
            "repositoryUrl": REPO_URL,
            "modificationPrompt": "What's the weather?",
            "requestId": "req-42",
        },
    }

    result = lambda_handler.handler(envelope, None)

    assert result == {
        "status": "rejected",
        "requestId": "req-42",
        "prUrl": None,
        "error": "Not a code change",
    }
    status = lambda_handler.handler(
        _api_event(method="GET", path="/status/req-42", pathParameters={"requestId": "req-42"}),
        None,
    )
    assert _body(status)["status"] == "rejected"
    assert _body(status)["errorDetails"] == "Not a code change"


def test_malformed_task_envelope_is_discarded(services):
    result = lambda_handler.handler({"source": TASK_SOURCE, "task": {"requestId": "req-1"}}, None)

    assert result["status"] == "invalid_task"


def test_unexpected_failure_is_500(monkeypatch):
    def broken():
        raise RuntimeError("settings missing")

    monkeypatch.setattr(lambda_handler, "build_lambda_services", broken)

    response = lambda_handler.handler(_api_event(body={}), None)

    assert response["statusCode"] == 500
    assert _body(response) == {"error": "Internal server error"}
