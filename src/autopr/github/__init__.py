"""GitHub API access for the bot account.

This module provides:
- An async GitHub REST client for fork, branch, PR and collaborator calls
- Repository URL parsing
- Commit and PR text builders
- The reconciler deciding what happens to existing default-branch PRs
"""

from src.autopr.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from src.autopr.github.models import (
    InvalidRepositoryURLError,
    PRCreateRequest,
    PullRequest,
    Repository,
    RepositoryRef,
    parse_repo_url,
)
from src.autopr.github.reconciler import (
    PullRequestReconciler,
    ReconciliationError,
    ReconciliationResult,
)

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "InvalidRepositoryURLError",
    "PRCreateRequest",
    "PullRequest",
    "PullRequestReconciler",
    "RateLimitError",
    "ReconciliationError",
    "ReconciliationResult",
    "Repository",
    "RepositoryRef",
    "parse_repo_url",
]
