"""GitHub API client for fork and pull request operations.

This module provides an async wrapper around the GitHub REST API for:
- Resolving the authenticated bot account
- Forking repositories (reusing an existing fork)
- Listing, creating and closing pull requests
- Deleting branches on the fork
- Granting collaborator access on the fork

Rate-limit responses are detected and raised as RateLimitError. Requests are
not retried in this layer; a failed call surfaces to the pipeline, which
ends the run.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from src.autopr.github.models import PRCreateRequest, PullRequest, Repository


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client for the bot account.

    Attributes:
        token: GitHub API token for the bot account.
        base_url: Base URL for GitHub API (default: https://api.github.com).
        timeout: Request timeout in seconds.
        fork_poll_attempts: How many times to poll a newly created fork.
        fork_poll_interval: Seconds between fork polls.

    Example:
        >>> client = GitHubClient(token="ghp_xxx")
        >>> async with client:
        ...     fork = await client.fork_repository("acme", "widgets")
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        fork_poll_attempts: int = 10,
        fork_poll_interval: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            timeout: Request timeout in seconds.
            fork_poll_attempts: Polls made while waiting for a new fork.
            fork_poll_interval: Delay between fork polls in seconds.
            transport: Optional httpx transport (for testing).
            sleep: Async sleep used between fork polls.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.fork_poll_attempts = fork_poll_attempts
        self.fork_poll_interval = fork_poll_interval
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._login: Optional[str] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "AutoPRBot/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _parse_int_header(self, headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError with reset information from the headers."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
            },
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            response_body=response.text,
            request_url=str(response.url),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make one HTTP request and map failures to GitHubAPIError.

        Raises:
            RateLimitError: If the rate limit is exceeded.
            GitHubAPIError: On any other error status or transport failure.
        """
        try:
            response = await self.client.request(
                method=method,
                url=path,
                json=json_data,
                params=params,
            )
        except httpx.TimeoutException as e:
            raise GitHubAPIError(
                message=f"GitHub API request timed out: {method} {path}",
                request_url=f"{self.base_url}{path}",
            ) from e
        except httpx.RequestError as e:
            raise GitHubAPIError(
                message=f"GitHub API request failed: {e}",
                request_url=f"{self.base_url}{path}",
            ) from e

        if response.status_code == 429:
            self._raise_rate_limit(response)
        if response.status_code == 403:
            remaining = self._parse_int_header(response.headers, "x-ratelimit-remaining")
            if remaining == 0:
                self._raise_rate_limit(response)

        if response.status_code >= 400:
            error_body = response.text
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise GitHubAPIError(
                message=f"GitHub API error: {response.status_code} {_error_message(response)}".rstrip(),
                status_code=response.status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

        return response

    async def get_authenticated_user(self) -> str:
        """Return the login of the account the token belongs to.

        The login is cached for the lifetime of the client.
        """
        if self._login is None:
            response = await self._request(method="GET", path="/user")
            self._login = response.json()["login"]
        return self._login

    async def get_repository(self, owner: str, repo: str) -> Repository:
        """Get repository details.

        Raises:
            GitHubAPIError: If the repository cannot be read (404 included).
        """
        response = await self._request(method="GET", path=f"/repos/{owner}/{repo}")
        return Repository.from_github_response(response.json())

    async def fork_repository(self, owner: str, repo: str) -> Repository:
        """Fork a repository into the bot account, or return the existing fork.

        A newly created fork is polled until GitHub reports it reachable,
        since fork creation completes asynchronously.

        Raises:
            GitHubAPIError: If the fork cannot be found or created, or never
                becomes reachable.
        """
        login = await self.get_authenticated_user()

        try:
            existing = await self.get_repository(login, repo)
        except GitHubAPIError as e:
            if e.status_code != 404:
                raise
            existing = None

        if existing is not None:
            if not existing.fork:
                logger.warning(
                    "Bot account repository with the same name is not a fork",
                    extra={"owner": login, "repo": repo},
                )
            logger.info(
                "Reusing existing fork",
                extra={"owner": owner, "repo": repo, "fork": existing.full_name},
            )
            return existing

        logger.info("Creating fork", extra={"owner": owner, "repo": repo})
        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/forks",
            json_data={"default_branch_only": True},
        )
        created = Repository.from_github_response(response.json())

        return await self._wait_for_fork(created)

    async def _wait_for_fork(self, fork: Repository) -> Repository:
        last_error: Optional[GitHubAPIError] = None
        for attempt in range(self.fork_poll_attempts):
            try:
                ready = await self.get_repository(fork.owner, fork.name)
                logger.info(
                    "Fork is ready",
                    extra={"fork": ready.full_name, "attempts": attempt + 1},
                )
                return ready
            except GitHubAPIError as e:
                if e.status_code != 404:
                    raise
                last_error = e
            await self._sleep(self.fork_poll_interval)

        raise GitHubAPIError(
            message=f"Fork {fork.full_name} was not ready after "
            f"{self.fork_poll_attempts} attempts",
            status_code=last_error.status_code if last_error else None,
            request_url=f"{self.base_url}/repos/{fork.full_name}",
        )

    async def list_open_pull_requests(
        self,
        owner: str,
        repo: str,
        head: Optional[str] = None,
    ) -> List[PullRequest]:
        """List open pull requests on a repository.

        Args:
            owner: Repository owner.
            repo: Repository name.
            head: Optional "{user}:{branch}" filter applied by GitHub.
        """
        params: Dict[str, Any] = {"state": "open", "per_page": 100}
        if head:
            params["head"] = head

        response = await self._request(
            method="GET",
            path=f"/repos/{owner}/{repo}/pulls",
            params=params,
        )
        return [PullRequest.from_github_response(item) for item in response.json()]

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        request: PRCreateRequest,
    ) -> PullRequest:
        """Create a pull request on the upstream repository."""
        logger.info(
            "Creating pull request",
            extra={
                "owner": owner,
                "repo": repo,
                "head": request.head,
                "base": request.base,
            },
        )

        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/pulls",
            json_data={
                "title": request.title,
                "body": request.body,
                "head": request.head,
                "base": request.base,
            },
        )
        pull_request = PullRequest.from_github_response(response.json())

        logger.info(
            "Pull request created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "pr_number": pull_request.number,
                "pr_url": pull_request.html_url,
            },
        )
        return pull_request

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Comment on an issue or pull request."""
        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json_data={"body": body},
        )
        return response.json()

    async def close_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        comment: Optional[str] = None,
    ) -> None:
        """Close a pull request, optionally leaving a comment first."""
        if comment:
            await self.create_comment(owner, repo, number, comment)

        await self._request(
            method="PATCH",
            path=f"/repos/{owner}/{repo}/pulls/{number}",
            json_data={"state": "closed"},
        )
        logger.info(
            "Pull request closed",
            extra={"owner": owner, "repo": repo, "pr_number": number},
        )

    async def delete_branch(self, owner: str, repo: str, branch: str) -> None:
        """Delete a branch.

        A branch that is already gone (GitHub answers 422 or 404) counts as
        deleted.
        """
        ref = quote(f"heads/{branch}", safe="/")
        try:
            await self._request(
                method="DELETE",
                path=f"/repos/{owner}/{repo}/git/refs/{ref}",
            )
        except GitHubAPIError as e:
            if e.status_code in (404, 422):
                logger.debug(
                    "Branch already deleted",
                    extra={"owner": owner, "repo": repo, "branch": branch},
                )
                return
            raise

        logger.info(
            "Branch deleted",
            extra={"owner": owner, "repo": repo, "branch": branch},
        )

    async def add_collaborator(
        self,
        owner: str,
        repo: str,
        username: str,
        permission: str = "push",
    ) -> None:
        """Invite a user as a collaborator on a repository."""
        await self._request(
            method="PUT",
            path=f"/repos/{owner}/{repo}/collaborators/{username}",
            json_data={"permission": permission},
        )
        logger.info(
            "Collaborator added",
            extra={
                "owner": owner,
                "repo": repo,
                "username": username,
                "permission": permission,
            },
        )


def _error_message(response: httpx.Response) -> str:
    """Extract GitHub's error message from a response body, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("message", ""))
    return ""
