"""Per-run stage machine.

This module implements the RunStateMachine that moves one pipeline run
through its stages. It validates every transition against the forward-only
ordering in models.py and writes each accepted transition through the
ProgressTracker, so an observer polling the tracker sees monotonic forward
motion and exactly one terminal write.
"""

import logging
from typing import Optional

from src.autopr.state.models import (
    Stage,
    is_terminal_stage,
    is_valid_transition,
    step_for_stage,
)
from src.autopr.state.tracker import ProgressTracker


logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a run attempts a transition the machine does not allow.

    Attributes:
        from_stage: The current stage.
        to_stage: The attempted target stage.
        message: Human-readable error message.
    """

    def __init__(
        self,
        from_stage: Stage,
        to_stage: Stage,
        message: Optional[str] = None,
    ):
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.message = message or (
            f"Invalid transition from {from_stage.value} to {to_stage.value}"
        )
        super().__init__(self.message)


class RunStateMachine:
    """Stage machine for a single pipeline run.

    One instance is owned by exactly one run, so there is no locking: the
    machine keeps the current stage in memory and the tracker record is a
    projection of it.

    Attributes:
        request_id: The request identity this run serves.
        repository: Repository URL recorded on every write.
        tracker: Where progress records are written.
        stage: The current stage.
        step: The step number of the most recent forward stage.

    Example:
        >>> machine = RunStateMachine("req-1", "https://github.com/a/b", tracker)
        >>> await machine.advance(Stage.VALIDATING, "Validating request...")
        >>> await machine.advance(Stage.FORKING, "Forking repository...")
        >>> await machine.fail("fork failed: 403")
    """

    def __init__(
        self,
        request_id: str,
        repository: str,
        tracker: ProgressTracker,
        initial_stage: Stage = Stage.PENDING,
    ):
        self.request_id = request_id
        self.repository = repository
        self.tracker = tracker
        self.stage = initial_stage
        self.step = step_for_stage(initial_stage)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_stage(self.stage)

    def _check(self, to_stage: Stage) -> None:
        if not is_valid_transition(self.stage, to_stage):
            logger.warning(
                "Invalid stage transition attempted",
                extra={
                    "request_id": self.request_id,
                    "from_stage": self.stage.value,
                    "to_stage": to_stage.value,
                },
            )
            raise InvalidTransitionError(self.stage, to_stage)

    async def advance(self, to_stage: Stage, status_message: str) -> None:
        """Move forward to a non-terminal stage and record it.

        Raises:
            InvalidTransitionError: If the move is not forward, or the
                target is a terminal stage (use complete/reject/fail).
        """
        if is_terminal_stage(to_stage):
            raise InvalidTransitionError(
                self.stage,
                to_stage,
                f"Use the terminal helpers to enter {to_stage.value}",
            )
        self._check(to_stage)

        self.stage = to_stage
        self.step = step_for_stage(to_stage)
        await self.tracker.update(
            self.request_id,
            to_stage,
            status_message,
            self.step,
            self.repository,
        )

    async def complete(self, pr_url: str, status_message: Optional[str] = None) -> None:
        """Enter COMPLETED with the pull request URL."""
        self._check(Stage.COMPLETED)
        self.stage = Stage.COMPLETED
        self.step = step_for_stage(Stage.COMPLETED)
        if status_message:
            await self.tracker.complete(
                self.request_id, pr_url, self.repository, message=status_message
            )
        else:
            await self.tracker.complete(self.request_id, pr_url, self.repository)

    async def reject(self, reason: str) -> None:
        """Enter REJECTED, keeping the current step."""
        self._check(Stage.REJECTED)
        self.stage = Stage.REJECTED
        await self.tracker.reject(
            self.request_id, reason, self.repository, step=self.step
        )

    async def fail(self, detail: str) -> None:
        """Enter ERROR, keeping the current step.

        A run that already reached a terminal stage keeps that outcome; a
        later failure is logged and not written, so a rejection is never
        overwritten by a generic error.
        """
        if self.is_terminal:
            logger.warning(
                "Ignoring failure after terminal stage",
                extra={
                    "request_id": self.request_id,
                    "stage": self.stage.value,
                    "error": detail,
                },
            )
            return
        self.stage = Stage.ERROR
        await self.tracker.error(
            self.request_id, detail, self.repository, step=self.step
        )
