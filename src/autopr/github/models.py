"""GitHub data models.

Typed views over the GitHub REST responses the pipeline uses, plus
repository URL parsing.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class InvalidRepositoryURLError(ValueError):
    """Raised when a repository URL does not name an owner/repo pair."""


# Accepts https://github.com/o/r, http://..., github.com/o/r, www.github.com/o/r,
# with an optional trailing slash or .git suffix
_REPO_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/"
    r"(?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)/"
    r"(?P<repo>[A-Za-z0-9._-]+?)"
    r"(?:\.git)?/?$"
)


class RepositoryRef(BaseModel):
    """An owner/repo pair."""

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def parse_repo_url(url: str) -> RepositoryRef:
    """Parse a GitHub repository URL into owner and repo.

    Example:
        >>> parse_repo_url("https://github.com/acme/widgets.git")
        RepositoryRef(owner='acme', repo='widgets')

    Raises:
        InvalidRepositoryURLError: If the URL is not a GitHub repository URL.
    """
    match = _REPO_URL_PATTERN.match(url.strip())
    if not match or match.group("repo") in (".", ".."):
        raise InvalidRepositoryURLError(f"Invalid GitHub repository URL: {url}")
    return RepositoryRef(owner=match.group("owner"), repo=match.group("repo"))


class Repository(BaseModel):
    """Subset of the GitHub repository resource."""

    owner: str
    name: str
    full_name: str
    default_branch: str = "main"
    html_url: str = ""
    clone_url: str = ""
    fork: bool = False
    parent_full_name: Optional[str] = None

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "Repository":
        parent = data.get("parent") or {}
        return cls(
            owner=data["owner"]["login"],
            name=data["name"],
            full_name=data["full_name"],
            default_branch=data.get("default_branch") or "main",
            html_url=data.get("html_url", ""),
            clone_url=data.get("clone_url", ""),
            fork=bool(data.get("fork", False)),
            parent_full_name=parent.get("full_name"),
        )


class PullRequest(BaseModel):
    """Subset of the GitHub pull request resource."""

    number: int
    html_url: str
    state: str = "open"
    title: str = ""
    head_ref: str = ""
    head_owner: Optional[str] = None
    author: Optional[str] = None

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "PullRequest":
        head = data.get("head") or {}
        head_repo = head.get("repo") or {}
        head_owner = (head_repo.get("owner") or {}).get("login") or (
            head.get("user") or {}
        ).get("login")
        return cls(
            number=data["number"],
            html_url=data["html_url"],
            state=data.get("state", "open"),
            title=data.get("title", ""),
            head_ref=head.get("ref", ""),
            head_owner=head_owner,
            author=(data.get("user") or {}).get("login"),
        )


class PRCreateRequest(BaseModel):
    """Request to open a pull request from a fork branch.

    Attributes:
        title: PR title.
        body: PR description in markdown.
        head: Head reference, "{forkOwner}:{branch}" for cross-repo PRs.
        base: Base branch on the upstream repository.
    """

    title: str = Field(..., min_length=1, max_length=256)
    body: str = ""
    head: str = Field(..., min_length=1)
    base: str = Field(..., min_length=1)
