"""Structured responses from the modification agent.

Field aliases are the camelCase keys the model is instructed to return.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_paths(value: object) -> List[str]:
    """Keep non-empty string paths, stripped of "./", in first-seen order."""
    if not isinstance(value, list):
        raise ValueError("expected a list of file paths")
    seen = []
    for item in value:
        if not isinstance(item, str):
            continue
        path = item.strip()
        while path.startswith("./"):
            path = path[2:]
        path = path.lstrip("/")
        if path and path not in seen:
            seen.append(path)
    return seen


class PromptValidation(BaseModel):
    """Judgment on whether a change request is actionable."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")

    reason: str = ""


class FilesToRead(BaseModel):
    """Files the model wants to see before planning."""

    model_config = ConfigDict(populate_by_name=True)

    files_to_read: List[str] = Field(default_factory=list, alias="filesToRead")

    @field_validator("files_to_read", mode="before")
    @classmethod
    def normalize(cls, v: object) -> List[str]:
        return _normalize_paths(v)


class ModificationPlan(BaseModel):
    """Files to change and a past-tense summary of the change."""

    model_config = ConfigDict(populate_by_name=True)

    files_to_modify: List[str] = Field(default_factory=list, alias="filesToModify")

    explanation: str = ""

    @field_validator("files_to_modify", mode="before")
    @classmethod
    def normalize(cls, v: object) -> List[str]:
        return _normalize_paths(v)
