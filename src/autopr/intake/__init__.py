"""Request intake: payload models, the dispatch bridge and dispatchers.

Imports are kept module-level in each submodule; the bridge is not
re-exported here because it depends on the orchestrator, which itself
imports the intake models.
"""

from src.autopr.intake.models import BridgeResponse, ChangeRequest, DispatchTask

__all__ = [
    "BridgeResponse",
    "ChangeRequest",
    "DispatchTask",
]
