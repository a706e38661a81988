"""Conversation history shared across the analysis and planning calls."""

from typing import List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage


class Conversation:
    """Ordered chat history.

    Analysis and planning append to one conversation. Each per-file
    generation works on a fork, so generations never see each other.
    """

    def __init__(self, messages: Optional[List[BaseMessage]] = None):
        self._messages: List[BaseMessage] = list(messages or [])

    @property
    def messages(self) -> List[BaseMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_system(self, content: str) -> None:
        self._messages.append(SystemMessage(content=content))

    def add_user(self, content: str) -> None:
        self._messages.append(HumanMessage(content=content))

    def add_assistant(self, content: str) -> None:
        self._messages.append(AIMessage(content=content))

    def fork(self) -> "Conversation":
        """Return an independent copy of this conversation."""
        return Conversation(self._messages)
