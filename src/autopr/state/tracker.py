"""Progress tracker for change requests.

Records the current stage of each request in the status table and serves
status reads. Status reporting is observability: every write failure is
logged and swallowed so that a lost update never aborts a pipeline run.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from src.autopr.state.models import (
    STATUS_RETENTION_SECONDS,
    ProgressRecord,
    Stage,
    step_for_stage,
)
from src.autopr.state.store import DynamoDBStore, StoreError


logger = logging.getLogger(__name__)


class StatusNotFoundError(Exception):
    """Raised when no live status record exists for a request.

    Attributes:
        request_id: The request identity that was looked up.
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class ProgressTracker:
    """Writes and reads ProgressRecords keyed by request identity.

    Writes are last-write-wins full replacements; each one stamps a fresh
    48-hour expiry. Store calls are blocking boto3 calls and run in a worker
    thread so they do not stall the event loop.

    Attributes:
        store: The DynamoDB store holding status records.
    """

    def __init__(
        self,
        store: DynamoDBStore,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self._clock = clock

    async def update(
        self,
        request_id: str,
        stage: Stage,
        message: str,
        step: int,
        repository: str,
    ) -> None:
        """Record that a request has entered a stage."""
        await self._write(
            request_id=request_id,
            stage=stage,
            message=message,
            step=step,
            repository=repository,
        )

    async def complete(
        self,
        request_id: str,
        pr_url: str,
        repository: str,
        message: str = "Pull request created successfully",
    ) -> None:
        """Mark a request as completed with its pull request URL."""
        await self._write(
            request_id=request_id,
            stage=Stage.COMPLETED,
            message=message,
            step=step_for_stage(Stage.COMPLETED),
            repository=repository,
            pr_url=pr_url,
        )

    async def reject(
        self,
        request_id: str,
        reason: str,
        repository: str,
        step: int = 0,
    ) -> None:
        """Mark a request as rejected by the prompt validator."""
        await self._write(
            request_id=request_id,
            stage=Stage.REJECTED,
            message="Modification request was rejected",
            step=step,
            repository=repository,
            error_details=reason,
        )

    async def error(
        self,
        request_id: str,
        detail: str,
        repository: str,
        step: int = 0,
    ) -> None:
        """Mark a request as failed."""
        await self._write(
            request_id=request_id,
            stage=Stage.ERROR,
            message="An error occurred during processing",
            step=step,
            repository=repository,
            error_details=detail,
        )

    async def get(self, request_id: str) -> ProgressRecord:
        """Return the current record for a request.

        Raises:
            StatusNotFoundError: If the record is unknown, expired, or
                cannot be read.
        """
        try:
            item = await asyncio.to_thread(self.store.get_item, request_id)
        except StoreError as exc:
            logger.warning(
                "Failed to read status",
                extra={"request_id": request_id, "error": str(exc)},
            )
            raise StatusNotFoundError(request_id) from exc

        if item is None:
            raise StatusNotFoundError(request_id)

        try:
            record = ProgressRecord.from_item(item)
        except ValueError as exc:
            logger.warning(
                "Malformed status record",
                extra={"request_id": request_id, "error": str(exc)},
            )
            raise StatusNotFoundError(request_id) from exc

        # TTL deletion is lazy in DynamoDB; an expired item may still be read
        if record.is_expired(self._clock()):
            raise StatusNotFoundError(request_id)

        return record

    async def _write(
        self,
        request_id: str,
        stage: Stage,
        message: str,
        step: int,
        repository: str,
        pr_url: Optional[str] = None,
        error_details: Optional[str] = None,
    ) -> None:
        now = int(self._clock())
        record = ProgressRecord(
            request_id=request_id,
            stage=stage,
            message=message,
            step=step,
            timestamp=now,
            repository=repository,
            pr_url=pr_url,
            error_details=error_details,
            expires_at=now + STATUS_RETENTION_SECONDS,
        )

        try:
            await asyncio.to_thread(self.store.put_item, record.to_item())
        except Exception as exc:
            logger.warning(
                "Failed to update status",
                extra={
                    "request_id": request_id,
                    "stage": stage.value,
                    "error": str(exc),
                },
            )
            return

        logger.info(
            "Status updated",
            extra={"request_id": request_id, "stage": stage.value, "step": step},
        )
