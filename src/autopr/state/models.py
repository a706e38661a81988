"""Request progress models.

This module defines the data models for tracking a change request through
the modification pipeline, including:
- Stage: Enum of all pipeline stages
- STAGE_ORDER / STAGE_STEPS: Required ordering and the step number exposed
  to callers for each stage
- ProgressRecord: The status record stored per request identity

The models use Pydantic for validation, consistent with the intake models
and configuration.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# Status records are deleted by the store 48 hours after their last write
STATUS_RETENTION_SECONDS = 48 * 3600


class Stage(str, Enum):
    """Pipeline stages that a change request progresses through.

    Stage Flow:
        pending → validating → forking → cloning → analyzing
        → modifying → committing → creating_pr → completed

    Any non-terminal stage can move to 'rejected' (the prompt was judged not
    actionable) or 'error' (any other unrecoverable failure). Both are
    absorbing. There is no recovery path: a failed request is resubmitted
    and starts a fresh run from 'pending'.
    """

    PENDING = "pending"
    VALIDATING = "validating"
    FORKING = "forking"
    CLONING = "cloning"
    ANALYZING = "analyzing"
    MODIFYING = "modifying"
    COMMITTING = "committing"
    CREATING_PR = "creating_pr"
    COMPLETED = "completed"
    REJECTED = "rejected"
    ERROR = "error"


STAGE_ORDER = (
    Stage.PENDING,
    Stage.VALIDATING,
    Stage.FORKING,
    Stage.CLONING,
    Stage.ANALYZING,
    Stage.MODIFYING,
    Stage.COMMITTING,
    Stage.CREATING_PR,
    Stage.COMPLETED,
)

STAGE_STEPS: Dict[Stage, int] = {
    Stage.PENDING: 0,
    Stage.VALIDATING: 0,
    Stage.FORKING: 1,
    Stage.CLONING: 2,
    Stage.ANALYZING: 3,
    Stage.MODIFYING: 4,
    Stage.COMMITTING: 5,
    Stage.CREATING_PR: 6,
    Stage.COMPLETED: 9,
}

TERMINAL_STAGES = frozenset({Stage.COMPLETED, Stage.REJECTED, Stage.ERROR})

FAILURE_STAGES = frozenset({Stage.REJECTED, Stage.ERROR})


def is_terminal_stage(stage: Stage) -> bool:
    """Check if a stage is terminal (no outgoing transitions).

    Example:
        >>> is_terminal_stage(Stage.REJECTED)
        True
        >>> is_terminal_stage(Stage.CLONING)
        False
    """
    return stage in TERMINAL_STAGES


def is_valid_transition(from_stage: Stage, to_stage: Stage) -> bool:
    """Check if moving from one stage to another is allowed.

    Transitions only move forward through STAGE_ORDER (skipping ahead is
    permitted) or drop into a failure stage. Nothing leaves a terminal stage.

    Example:
        >>> is_valid_transition(Stage.FORKING, Stage.CLONING)
        True
        >>> is_valid_transition(Stage.CLONING, Stage.FORKING)
        False
        >>> is_valid_transition(Stage.ANALYZING, Stage.ERROR)
        True
    """
    if is_terminal_stage(from_stage):
        return False
    if to_stage in FAILURE_STAGES:
        return True
    return STAGE_ORDER.index(to_stage) > STAGE_ORDER.index(from_stage)


def step_for_stage(stage: Stage) -> int:
    """Return the caller-visible step number for a non-failure stage."""
    return STAGE_STEPS[stage]


class ProgressRecord(BaseModel):
    """Current status of one change request.

    Every write replaces the whole record; there is no merge. Field aliases
    are the camelCase attribute names used both in the store and in the
    status-read response.

    Attributes:
        request_id: Opaque identity minted when the request was accepted.
        stage: Current pipeline stage.
        message: Human-readable description of the current step.
        step: Caller-visible step number, non-decreasing over a run.
        timestamp: Unix time of the write.
        repository: Repository URL the request targets.
        pr_url: Pull request URL, set on completion.
        error_details: Failure description, set on error or rejection.
        expires_at: Unix time after which the store deletes the record.
    """

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., min_length=1, alias="requestId")

    stage: Stage = Field(..., alias="status")

    message: str = ""

    step: int = 0

    timestamp: int = Field(default_factory=lambda: int(time.time()))

    repository: str = ""

    pr_url: Optional[str] = Field(default=None, alias="prUrl")

    error_details: Optional[str] = Field(default=None, alias="errorDetails")

    expires_at: int = Field(default=0, alias="expiresAt")

    @property
    def is_terminal(self) -> bool:
        return is_terminal_stage(self.stage)

    def is_expired(self, now: float) -> bool:
        """Check whether the record's retention window has passed."""
        return 0 < self.expires_at <= now

    def to_item(self) -> Dict[str, Any]:
        """Convert to a plain dict for storage, omitting unset optionals."""
        item = self.model_dump(by_alias=True, exclude_none=True)
        item["status"] = self.stage.value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ProgressRecord":
        """Build a record from a stored item.

        Numeric attributes come back from DynamoDB as Decimal and are
        converted to int here.
        """
        data = dict(item)
        for numeric in ("step", "timestamp", "expiresAt"):
            if numeric in data and data[numeric] is not None:
                data[numeric] = int(data[numeric])
        return cls.model_validate(data)

    def to_response(self) -> Dict[str, Any]:
        """Build the status-read response body."""
        body = self.to_item()
        body.pop("expiresAt", None)
        return body
