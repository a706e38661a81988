"""Chat completion client with retry.

Wraps LangChain's ChatOpenAI with the retry policy the pipeline needs:
rate-limit, server and connection errors are retried with exponential
backoff; any other failure is raised immediately. The underlying client's
own retries are disabled so this layer is the only one that retries.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI


logger = logging.getLogger(__name__)


JSON_RESPONSE_FORMAT: Dict[str, str] = {"type": "json_object"}


class LLMError(Exception):
    """Raised when the language model cannot produce a response.

    Attributes:
        message: Human-readable error description.
        attempts: Number of attempts made.
        cause: The underlying exception from the last attempt.
    """

    def __init__(
        self,
        message: str,
        attempts: int = 1,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.attempts = attempts
        self.cause = cause
        super().__init__(message)


def is_retryable(error: Exception) -> bool:
    """Check whether an OpenAI error is worth retrying.

    Rate limiting (429), server errors (5xx) and connection failures or
    timeouts are retryable. Other client errors are not.
    """
    if isinstance(error, (openai.RateLimitError, openai.APIConnectionError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code >= 500
    return False


class LLMClient:
    """Retrying chat client over a LangChain chat model.

    Attributes:
        model: Model name passed to the inference service.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts per call, including the first.
        base_delay: Delay before the first retry; doubles on each retry.

    Example:
        >>> client = LLMClient(api_key="sk-...", model="gpt-5-mini")
        >>> text = await client.chat([HumanMessage(content="Hello")])
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-5-mini",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        chat_model: Optional[BaseChatModel] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            api_key: OpenAI API key.
            model: Model name.
            base_url: Optional OpenAI-compatible endpoint.
            timeout: Per-request timeout in seconds.
            max_attempts: Total attempts per call.
            base_delay: Initial backoff delay in seconds.
            chat_model: Optional pre-built chat model (for testing).
            sleep: Async sleep used between retries.
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep
        self._llm: Optional[BaseChatModel] = chat_model

    @property
    def llm(self) -> BaseChatModel:
        """Get the chat model, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.model,
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._llm

    def _calculate_backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def chat(self, messages: List[BaseMessage], json_mode: bool = False) -> str:
        """Send a conversation and return the assistant's text.

        Args:
            messages: The conversation so far.
            json_mode: Ask the service for a JSON object response.

        Raises:
            LLMError: If the call fails with a non-retryable error, retries
                are exhausted, or the response carries no text.
        """
        invoke_kwargs: Dict[str, Any] = {}
        if json_mode:
            invoke_kwargs["response_format"] = JSON_RESPONSE_FORMAT

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self._calculate_backoff(attempt - 1)
                logger.warning(
                    "Retrying LLM call",
                    extra={
                        "attempt": attempt + 1,
                        "max_attempts": self.max_attempts,
                        "delay": delay,
                        "error": str(last_error),
                    },
                )
                await self._sleep(delay)

            try:
                response = await self.llm.ainvoke(messages, **invoke_kwargs)
            except openai.OpenAIError as e:
                last_error = e
                if is_retryable(e):
                    continue
                raise LLMError(f"LLM request failed: {e}", attempts=attempt + 1, cause=e) from e

            content = response.content
            if not isinstance(content, str):
                raise LLMError(f"Unexpected response type: {type(content).__name__}")
            return content

        raise LLMError(
            f"LLM request failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
            cause=last_error,
        ) from last_error
