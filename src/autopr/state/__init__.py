"""Request progress tracking.

This module tracks each change request through the pipeline stages:
- pending → validating → forking → cloning → analyzing
- → modifying → committing → creating_pr → completed

Progress records live in DynamoDB with a 48-hour TTL and are overwritten
on every transition.
"""

from src.autopr.state.models import (
    STAGE_ORDER,
    STAGE_STEPS,
    ProgressRecord,
    Stage,
    is_terminal_stage,
    is_valid_transition,
    step_for_stage,
)
from src.autopr.state.store import (
    DynamoDBStore,
    StoreError,
    StoreThrottlingError,
)
from src.autopr.state.tracker import (
    ProgressTracker,
    StatusNotFoundError,
)
from src.autopr.state.machine import (
    InvalidTransitionError,
    RunStateMachine,
)

__all__ = [
    # Models
    "STAGE_ORDER",
    "STAGE_STEPS",
    "ProgressRecord",
    "Stage",
    "is_terminal_stage",
    "is_valid_transition",
    "step_for_stage",
    # Store
    "DynamoDBStore",
    "StoreError",
    "StoreThrottlingError",
    # Tracker
    "ProgressTracker",
    "StatusNotFoundError",
    # State machine
    "InvalidTransitionError",
    "RunStateMachine",
]
