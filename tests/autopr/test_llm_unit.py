"""Unit tests for the retrying LLM client and the modification agent.

The agent is driven by LangChain's FakeListChatModel; retry behaviour is
exercised with real openai exception types raised from a mocked model.
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from src.autopr.llm.agent import (
    AgentResponseError,
    ModificationAgent,
    strip_code_fence,
)
from src.autopr.llm.client import LLMClient, LLMError, is_retryable
from src.autopr.llm.conversation import Conversation
from src.autopr.llm.models import FilesToRead


def run_async(coro):
    return asyncio.run(coro)


_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls(
        f"status {status}",
        response=httpx.Response(status, request=_REQUEST),
        body=None,
    )


def _connection_error():
    return openai.APIConnectionError(message="connection reset", request=_REQUEST)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _mock_client(side_effect, max_attempts: int = 3):
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=side_effect)
    sleep = SleepRecorder()
    client = LLMClient(chat_model=model, max_attempts=max_attempts, sleep=sleep)
    return client, model, sleep


def _agent(responses: List[str]) -> ModificationAgent:
    return ModificationAgent(LLMClient(chat_model=FakeListChatModel(responses=responses)))


# ---------------------------------------------------------------------------
# LLMClient
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (_status_error(openai.RateLimitError, 429), True),
            (_status_error(openai.InternalServerError, 500), True),
            (_status_error(openai.APIStatusError, 503), True),
            (_connection_error(), True),
            (_status_error(openai.BadRequestError, 400), False),
            (_status_error(openai.AuthenticationError, 401), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_retries_with_exponential_backoff(self):
        client, model, sleep = _mock_client([
            _status_error(openai.RateLimitError, 429),
            _connection_error(),
            AIMessage(content="done"),
        ])

        assert run_async(client.chat([HumanMessage(content="hi")])) == "done"
        assert model.ainvoke.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self):
        client, model, _ = _mock_client([_status_error(openai.InternalServerError, 500)] * 3)

        with pytest.raises(LLMError) as exc_info:
            run_async(client.chat([HumanMessage(content="hi")]))

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, openai.InternalServerError)

    def test_client_errors_are_not_retried(self):
        client, model, sleep = _mock_client([_status_error(openai.BadRequestError, 400)])

        with pytest.raises(LLMError):
            run_async(client.chat([HumanMessage(content="hi")]))

        assert model.ainvoke.await_count == 1
        assert sleep.delays == []

    def test_json_mode_requests_json_object(self):
        client, model, _ = _mock_client([AIMessage(content="{}")])

        run_async(client.chat([HumanMessage(content="hi")], json_mode=True))

        assert model.ainvoke.await_args.kwargs == {"response_format": {"type": "json_object"}}

    def test_non_text_content_is_an_error(self):
        client, _, _ = _mock_client([AIMessage(content=[{"type": "image_url"}])])

        with pytest.raises(LLMError):
            run_async(client.chat([HumanMessage(content="hi")]))

    def test_default_model_disables_sdk_retries(self):
        client = LLMClient(api_key="sk-test", model="gpt-5-mini")

        assert client.llm.max_retries == 0
        assert client.llm.model_name == "gpt-5-mini"


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class TestModificationAgent:
    def test_validate_prompt(self):
        agent = _agent(['{"isValid": false, "reason": "Not a code change"}'])

        validation = run_async(agent.validate_prompt("What's the weather?"))

        assert not validation.is_valid
        assert validation.reason == "Not a code change"

    def test_analysis_accepts_fenced_json_and_normalizes_paths(self):
        agent = _agent(['```json\n{"filesToRead": ["./README.md", "/src/app.py", "README.md", 3]}\n```'])

        conversation, files = run_async(agent.analyze_repository("README.md\nsrc/\n  app.py\n", "Add docs"))

        assert files == ["README.md", "src/app.py"]
        assert isinstance(conversation.messages[0], SystemMessage)
        assert isinstance(conversation.messages[-1], AIMessage)

    def test_invalid_json_raises_agent_error(self):
        agent = _agent(["I think you should read README.md"])

        with pytest.raises(AgentResponseError) as exc_info:
            run_async(agent.analyze_repository("README.md\n", "Add docs"))

        assert exc_info.value.response_preview.startswith("I think")

    def test_non_object_json_raises_agent_error(self):
        agent = _agent(['["README.md"]'])

        with pytest.raises(AgentResponseError):
            run_async(agent.validate_prompt("Add docs"))

    def test_empty_plan_is_an_error(self):
        agent = _agent(['{"filesToModify": [], "explanation": "Nothing to do."}'])

        with pytest.raises(AgentResponseError):
            run_async(agent.plan_modifications(Conversation(), {}, "Add docs"))

    def test_plan_continues_the_conversation(self):
        agent = _agent(['{"filesToModify": ["CONTRIBUTING.md"], "explanation": "Added a guide."}'])
        conversation = Conversation()
        conversation.add_system("system")

        plan = run_async(agent.plan_modifications(
            conversation, {"README.md": "# Widgets\n"}, "Add a CONTRIBUTING.md"
        ))

        assert plan.files_to_modify == ["CONTRIBUTING.md"]
        assert plan.explanation == "Added a guide."
        assert len(conversation) == 3
        assert "=== README.md ===" in conversation.messages[1].content

    def test_generation_runs_on_a_fork(self):
        agent = _agent(["```markdown\n# Contributing\n```"])
        conversation = Conversation()
        conversation.add_system("system")

        content = run_async(agent.generate_file(conversation, "CONTRIBUTING.md", "", "Add docs"))

        assert content == "# Contributing\n"
        assert len(conversation) == 1


@pytest.mark.parametrize(
    "text, expected",
    [
        ("```python\nprint(1)\n```", "print(1)\n"),
        ("```\nplain\n```", "plain\n"),
        ("no fence here\n", "no fence here\n"),
        ("```", "```"),
    ],
)
def test_strip_code_fence(text, expected):
    assert strip_code_fence(text) == expected


def test_files_to_read_requires_a_list():
    with pytest.raises(ValueError):
        FilesToRead.model_validate({"filesToRead": "README.md"})
