"""Change request intake models.

This module defines the data models that cross the intake boundary:
- ChangeRequest: The caller's payload, validated once at intake
- DispatchTask: A ChangeRequest plus the request identity, handed from
  the accept phase to the process phase
- BridgeResponse: Status code and JSON body returned to the caller

Field aliases are the camelCase keys used on the wire.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.autopr.github.models import RepositoryRef, parse_repo_url


class ChangeRequest(BaseModel):
    """A request to change a repository through a bot pull request.

    Attributes:
        repository_url: GitHub URL of the upstream repository.
        modification_prompt: Natural-language description of the change.
        github_username: Optional user to add as collaborator on the fork.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    repository_url: str = Field(..., alias="repositoryUrl")

    modification_prompt: str = Field(..., alias="modificationPrompt")

    github_username: Optional[str] = Field(default=None, alias="githubUsername")

    @field_validator("repository_url")
    @classmethod
    def validate_repository_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("repositoryUrl is required")
        parse_repo_url(v)
        return v

    @field_validator("modification_prompt")
    @classmethod
    def validate_modification_prompt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("modificationPrompt is required")
        return v

    @field_validator("github_username")
    @classmethod
    def normalize_github_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lstrip("@")
        return v or None

    @property
    def repository(self) -> RepositoryRef:
        return parse_repo_url(self.repository_url)


class DispatchTask(ChangeRequest):
    """Unit of work handed from the accept phase to the process phase."""

    request_id: str = Field(..., min_length=1, alias="requestId")

    @classmethod
    def from_request(cls, request: ChangeRequest, request_id: str) -> "DispatchTask":
        return cls(
            repository_url=request.repository_url,
            modification_prompt=request.modification_prompt,
            github_username=request.github_username,
            request_id=request_id,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for hand-off, with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class BridgeResponse:
    """HTTP-style response from the dispatch bridge."""

    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)
