"""Two-phase dispatch bridge.

The accept phase is synchronous and latency-bounded: it validates the
payload, applies the rate limit, mints a request identity, writes the
initial status record and hands the task to a dispatcher. The process phase
is asynchronous and unbounded: it runs the modification pipeline.

The accept phase never reports pipeline failures; callers poll the status
read for the outcome.
"""

import logging
import uuid
from typing import Any, Callable, Optional

from pydantic import ValidationError

from src.autopr.intake.dispatcher import (
    DispatchCapacityError,
    DispatchError,
    TaskDispatcher,
)
from src.autopr.intake.models import BridgeResponse, ChangeRequest, DispatchTask
from src.autopr.orchestrator import (
    ModificationPipeline,
    PipelineOutcome,
    PipelineResult,
)
from src.autopr.ratelimit.limiter import RateLimiter
from src.autopr.state.models import Stage, step_for_stage
from src.autopr.state.tracker import ProgressTracker, StatusNotFoundError


logger = logging.getLogger(__name__)


ACCEPTED_MESSAGE = "Your request is being processed."

PENDING_MESSAGE = "Request received, starting processing..."

CAPACITY_MESSAGE = (
    "Bot is currently at capacity processing other requests. "
    "Please try again in a few minutes."
)


def _validation_message(error: ValidationError) -> str:
    """Turn the first pydantic error into a short caller-facing message."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if first.get("type") == "missing":
        return f"{location} is required"
    message = str(first.get("msg", "invalid value"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    return f"{location}: {message}" if location else message


def _new_request_id() -> str:
    return str(uuid.uuid4())


class DispatchBridge:
    """Accept/process contract between callers and the pipeline.

    Attributes:
        limiter: Per-address rate limiter.
        tracker: Progress tracker for status records.
        dispatcher: Hands tasks to the process phase.
        pipeline: Runs the process phase.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        tracker: ProgressTracker,
        dispatcher: TaskDispatcher,
        pipeline: ModificationPipeline,
        id_factory: Callable[[], str] = _new_request_id,
    ):
        self.limiter = limiter
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.pipeline = pipeline
        self._id_factory = id_factory

    async def accept(self, payload: Any, client_address: Optional[str]) -> BridgeResponse:
        """Validate, rate-limit, record and hand off a change request."""
        if not isinstance(payload, dict):
            return BridgeResponse(400, {"error": "Request body must be a JSON object"})

        try:
            request = ChangeRequest.model_validate(payload)
        except ValidationError as exc:
            message = _validation_message(exc)
            logger.info("Rejected invalid request", extra={"error": message})
            return BridgeResponse(400, {"error": message})

        rate = await self.limiter.check(client_address)
        if not rate.allowed:
            return BridgeResponse(
                429,
                {"error": "Rate limit exceeded", "rateLimit": rate.to_response()},
            )

        # Refuse before recording so the caller keeps its rate-limit slot
        if not self.dispatcher.has_capacity():
            logger.warning(
                "Dispatch refused at capacity",
                extra={"repository": request.repository_url},
            )
            return BridgeResponse(503, {"error": CAPACITY_MESSAGE})

        request_id = self._id_factory()
        await self.limiter.record(client_address, request_id)
        await self.tracker.update(
            request_id,
            Stage.PENDING,
            PENDING_MESSAGE,
            step_for_stage(Stage.PENDING),
            request.repository_url,
        )

        task = DispatchTask.from_request(request, request_id)
        try:
            await self.dispatcher.dispatch(task)
        except DispatchCapacityError as exc:
            logger.warning(
                "Dispatch refused at capacity",
                extra={"request_id": request_id, "error": str(exc)},
            )
            return BridgeResponse(503, {"error": CAPACITY_MESSAGE})
        except DispatchError as exc:
            logger.error(
                "Failed to dispatch task",
                extra={"request_id": request_id, "error": str(exc)},
            )
            await self.tracker.error(
                request_id,
                f"Failed to start async processing: {exc}",
                request.repository_url,
            )
            return BridgeResponse(500, {"error": f"Failed to start processing: {exc}"})

        logger.info(
            "Request accepted",
            extra={"request_id": request_id, "repository": request.repository_url},
        )
        return BridgeResponse(
            202,
            {
                "status": "processing",
                "message": ACCEPTED_MESSAGE,
                "repository": request.repository_url,
                "requestId": request_id,
            },
        )

    async def process(self, task: DispatchTask) -> PipelineResult:
        """Run the pipeline for a dispatched task. Never raises."""
        try:
            return await self.pipeline.run(task)
        except Exception as exc:
            logger.exception(
                "Pipeline run raised unexpectedly",
                extra={"request_id": task.request_id},
            )
            await self.tracker.error(task.request_id, str(exc), task.repository_url)
            return PipelineResult(
                request_id=task.request_id,
                outcome=PipelineOutcome.ERROR,
                error=str(exc),
            )

    async def status(self, request_id: Optional[str]) -> BridgeResponse:
        """Read the current status record for a request."""
        request_id = (request_id or "").strip()
        if not request_id:
            return BridgeResponse(400, {"error": "Missing requestId in path"})

        try:
            record = await self.tracker.get(request_id)
        except StatusNotFoundError:
            return BridgeResponse(404, {"error": "Request not found"})

        return BridgeResponse(200, record.to_response())
