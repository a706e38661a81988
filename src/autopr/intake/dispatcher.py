"""Task dispatchers for the accept → process hand-off.

The accept phase hands each DispatchTask to a dispatcher and returns at
once. Two mechanisms are provided:

- BackgroundTaskDispatcher: schedules the process phase as an asyncio task
  in the same process (server deployment)
- LambdaInvokeDispatcher: invokes the Lambda function asynchronously with
  an explicit internal-task envelope (serverless deployment)
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.autopr.intake.models import DispatchTask


logger = logging.getLogger(__name__)


TASK_SOURCE = "auto-pr-bot.dispatch"

CAPACITY_ERROR_MARKERS = (
    "ReservedConcurrentExecutions",
    "TooManyRequestsException",
    "Rate exceeded",
)


class DispatchError(Exception):
    """Raised when a task cannot be handed off for processing."""


class DispatchCapacityError(DispatchError):
    """Raised when the processing side is at capacity."""


def build_task_envelope(task: DispatchTask) -> Dict[str, Any]:
    """Wrap a task so the Lambda handler recognises it as internal."""
    return {"source": TASK_SOURCE, "task": task.to_payload()}


def is_task_envelope(event: Any) -> bool:
    return (
        isinstance(event, dict)
        and event.get("source") == TASK_SOURCE
        and isinstance(event.get("task"), dict)
    )


class TaskDispatcher(ABC):
    """Hands a task to the process phase without waiting for it."""

    @abstractmethod
    async def dispatch(self, task: DispatchTask) -> None:
        """Hand off a task.

        Raises:
            DispatchCapacityError: If the processing side is at capacity.
            DispatchError: If the hand-off fails for any other reason.
        """

    def has_capacity(self) -> bool:
        """Whether a dispatch would be accepted, when that is known locally.

        Remote dispatchers only learn about capacity from the dispatch
        itself, so the default is True.
        """
        return True

    async def close(self) -> None:
        """Release resources. The default implementation does nothing."""


ProcessFn = Callable[[DispatchTask], Awaitable[Any]]


class BackgroundTaskDispatcher(TaskDispatcher):
    """Runs the process phase as in-process asyncio tasks.

    Strong references to running tasks are kept until they finish, so the
    event loop cannot garbage-collect them mid-run.

    Attributes:
        max_in_flight: Maximum concurrently running tasks.
    """

    def __init__(self, max_in_flight: int = 4, process: Optional[ProcessFn] = None):
        self.max_in_flight = max_in_flight
        self._process = process
        self._tasks: Set[asyncio.Task] = set()

    def bind(self, process: ProcessFn) -> None:
        """Set the coroutine function that runs the process phase."""
        self._process = process

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def has_capacity(self) -> bool:
        return len(self._tasks) < self.max_in_flight

    async def dispatch(self, task: DispatchTask) -> None:
        if self._process is None:
            raise DispatchError("No process function bound to dispatcher")

        if not self.has_capacity():
            logger.warning(
                "Dispatcher at capacity",
                extra={"request_id": task.request_id, "in_flight": len(self._tasks)},
            )
            raise DispatchCapacityError(
                f"{len(self._tasks)} of {self.max_in_flight} runs in flight"
            )

        background = asyncio.create_task(
            self._process(task), name=f"autopr-{task.request_id}"
        )
        self._tasks.add(background)
        background.add_done_callback(self._tasks.discard)

        logger.info(
            "Task dispatched in background",
            extra={"request_id": task.request_id, "in_flight": len(self._tasks)},
        )

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()


class LambdaInvokeDispatcher(TaskDispatcher):
    """Invokes the configured Lambda function asynchronously.

    Attributes:
        function_name: Name or ARN of the function to invoke.
    """

    def __init__(
        self,
        function_name: str,
        lambda_client=None,
        region_name: Optional[str] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            function_name: Name or ARN of the function to invoke
            lambda_client: Optional boto3 Lambda client (for testing)
            region_name: AWS region used when creating the default client
        """
        self.function_name = function_name
        self._lambda = lambda_client or boto3.client("lambda", region_name=region_name)

    def _invoke(self, payload: bytes) -> Dict[str, Any]:
        return self._lambda.invoke(
            FunctionName=self.function_name,
            InvocationType="Event",
            Payload=payload,
        )

    async def dispatch(self, task: DispatchTask) -> None:
        payload = json.dumps(build_task_envelope(task)).encode("utf-8")

        try:
            response = await asyncio.to_thread(self._invoke, payload)
        except ClientError as e:
            error = e.response.get("Error", {})
            description = f"{error.get('Code', '')}: {error.get('Message', str(e))}"
            if any(marker in description for marker in CAPACITY_ERROR_MARKERS):
                raise DispatchCapacityError(description) from e
            raise DispatchError(f"Failed to invoke Lambda async: {description}") from e
        except BotoCoreError as e:
            raise DispatchError(f"Failed to invoke Lambda async: {e}") from e

        status_code = response.get("StatusCode")
        if status_code is not None and status_code != 202:
            raise DispatchError(f"Unexpected Lambda invoke status: {status_code}")

        logger.info(
            "Task dispatched to Lambda",
            extra={"request_id": task.request_id, "function_name": self.function_name},
        )
