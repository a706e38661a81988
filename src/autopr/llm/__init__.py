"""Language model access for the modification pipeline."""

from src.autopr.llm.agent import (
    AgentResponseError,
    ModificationAgent,
    strip_code_fence,
)
from src.autopr.llm.client import LLMClient, LLMError, is_retryable
from src.autopr.llm.conversation import Conversation
from src.autopr.llm.models import FilesToRead, ModificationPlan, PromptValidation

__all__ = [
    "AgentResponseError",
    "Conversation",
    "FilesToRead",
    "LLMClient",
    "LLMError",
    "ModificationAgent",
    "ModificationPlan",
    "PromptValidation",
    "is_retryable",
    "strip_code_fence",
]
