"""Pipeline event models for observability.

This module defines the data models for pipeline events:
- EventType: Enum of all event types emitted by the pipeline
- PipelineEvent: Structured event with request identity and details

Events are emitted for monitoring, alerting, and debugging. They never
affect the outcome of a run.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the modification pipeline.

    Attributes:
        STATE_TRANSITION: A run moved from one stage to the next.
        COMPLETION: A run ended with a pull request URL.
        REJECTION: The change request was judged not actionable.
        ERROR: A run ended with an unrecoverable failure.
    """

    STATE_TRANSITION = "state_transition"
    COMPLETION = "completion"
    REJECTION = "rejection"
    ERROR = "error"


class PipelineEvent(BaseModel):
    """Structured event emitted by the modification pipeline.

    Attributes:
        event_type: The category of event.
        request_id: Identity of the change request.
        repository: URL of the target repository.
        timestamp: When the event occurred (UTC).
        details: Additional context specific to the event type.

    Details Field Conventions:
        For STATE_TRANSITION events:
            - from_stage, to_stage

        For COMPLETION events:
            - pr_url, reused_existing_pr, stage, duration_seconds

        For REJECTION events:
            - reason, stage, duration_seconds

        For ERROR events:
            - error_message, error_type, stage, duration_seconds

    Example:
        >>> event = PipelineEvent(
        ...     event_type=EventType.STATE_TRANSITION,
        ...     request_id="5f0c...",
        ...     repository="https://github.com/acme/widgets",
        ...     details={"from_stage": "forking", "to_stage": "cloning"},
        ... )
    """

    event_type: EventType

    request_id: str = Field(..., min_length=1)

    repository: str = Field(..., min_length=1)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    details: Dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event into a dict suitable for logging extra fields."""
        return {
            "event_type": self.event_type.value,
            "request_id": self.request_id,
            "repository": self.repository,
            "event_timestamp": self.timestamp.isoformat(),
            **self.details,
        }
