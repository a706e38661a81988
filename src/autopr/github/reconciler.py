"""Reconciliation of bot pull requests opened from the fork's default branch.

Runs after commit/push and before a new PR is created. Only PRs whose head
is the fork's default branch are considered; PRs from per-run feature
branches are never touched, so one repository can carry several
independent bot PRs at once.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from src.autopr.github.client import GitHubAPIError, GitHubClient
from src.autopr.github.models import PullRequest
from src.autopr.github.pr_content import build_supersede_comment


logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Raised when the run has nothing to commit and no PR to point at.

    Attributes:
        message: Human-readable error message.
        repository: "owner/repo" of the upstream repository.
    """

    def __init__(self, message: str, repository: Optional[str] = None):
        self.message = message
        self.repository = repository
        super().__init__(message)


@dataclass
class ReconciliationResult:
    """What reconciliation decided.

    Attributes:
        existing_pr_url: Set when an open PR already satisfies the request;
            the run completes with it and creates nothing.
        closed: Numbers of PRs closed as superseded.
        deleted_branches: Fork branches deleted after their PR was closed.
    """

    existing_pr_url: Optional[str] = None
    closed: List[int] = field(default_factory=list)
    deleted_branches: List[str] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return self.existing_pr_url is not None


class PullRequestReconciler:
    """Applies the existing-PR policy for one run."""

    def __init__(self, github: GitHubClient):
        self.github = github

    async def find_default_branch_prs(
        self,
        owner: str,
        repo: str,
        fork_owner: str,
        default_branch: str,
    ) -> List[PullRequest]:
        """List open upstream PRs headed at the fork's default branch.

        The server-side head filter is re-checked here on head ref and
        author. A listing failure is logged and treated as no PRs.
        """
        try:
            pulls = await self.github.list_open_pull_requests(
                owner, repo, head=f"{fork_owner}:{default_branch}"
            )
        except GitHubAPIError as exc:
            logger.warning(
                "Failed to list existing pull requests",
                extra={
                    "repository": f"{owner}/{repo}",
                    "status_code": exc.status_code,
                    "error": str(exc),
                },
            )
            return []

        return [
            pr
            for pr in pulls
            if pr.head_ref == default_branch
            and fork_owner in (pr.head_owner, pr.author)
        ]

    async def reconcile(
        self,
        owner: str,
        repo: str,
        fork_owner: str,
        default_branch: str,
        has_changes: bool,
        prompt: str,
    ) -> ReconciliationResult:
        """Decide what happens to existing default-branch PRs.

        Raises:
            ReconciliationError: If there are no changes and no existing PR.
        """
        existing = await self.find_default_branch_prs(
            owner, repo, fork_owner, default_branch
        )
        result = ReconciliationResult()

        if not has_changes:
            if not existing:
                raise ReconciliationError(
                    "no changes to commit and no existing PR found",
                    repository=f"{owner}/{repo}",
                )
            result.existing_pr_url = existing[0].html_url
            logger.info(
                "Existing pull request already satisfies the request",
                extra={
                    "repository": f"{owner}/{repo}",
                    "pr_url": result.existing_pr_url,
                },
            )
            return result

        if existing:
            logger.info(
                "Superseding existing default-branch pull requests",
                extra={"repository": f"{owner}/{repo}", "count": len(existing)},
            )

        comment = build_supersede_comment(prompt)
        for pr in existing:
            try:
                await self.github.close_pull_request(owner, repo, pr.number, comment)
                result.closed.append(pr.number)
            except GitHubAPIError as exc:
                logger.warning(
                    "Failed to close pull request",
                    extra={"pr_number": pr.number, "error": str(exc)},
                )
                continue

            if pr.head_ref == default_branch:
                logger.debug(
                    "Skipping deletion of default branch",
                    extra={"branch": pr.head_ref},
                )
                continue

            try:
                await self.github.delete_branch(fork_owner, repo, pr.head_ref)
                result.deleted_branches.append(pr.head_ref)
            except GitHubAPIError as exc:
                logger.warning(
                    "Failed to delete branch",
                    extra={"branch": pr.head_ref, "error": str(exc)},
                )

        return result
