"""Unit tests for the GitHub client, repository URL parsing and PR text.

HTTP traffic is served by httpx.MockTransport handlers that record every
request the client makes.
"""

import asyncio
import json
from typing import Callable, Dict, List, Tuple

import httpx
import pytest

from src.autopr.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.autopr.github.models import (
    InvalidRepositoryURLError,
    PRCreateRequest,
    PullRequest,
    parse_repo_url,
)
from src.autopr.github.pr_content import (
    PR_FOOTER,
    build_commit_message,
    build_pr_body,
    build_pr_title,
)


def run_async(coro):
    return asyncio.run(coro)


async def _no_sleep(_seconds: float) -> None:
    return None


def _repo_json(owner: str, name: str, fork: bool = False, default_branch: str = "main") -> Dict:
    return {
        "name": name,
        "full_name": f"{owner}/{name}",
        "owner": {"login": owner},
        "default_branch": default_branch,
        "html_url": f"https://github.com/{owner}/{name}",
        "clone_url": f"https://github.com/{owner}/{name}.git",
        "fork": fork,
    }


Route = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    """Routes (method, path) to canned responses and records requests."""

    def __init__(self, routes: Dict[Tuple[str, str], object]):
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if callable(route):
            return route(request)
        return route

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def _client(handler) -> GitHubClient:
    return GitHubClient(
        token="ghp_test",
        transport=httpx.MockTransport(handler),
        fork_poll_interval=0,
        sleep=_no_sleep,
    )


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/widgets",
        "https://github.com/acme/widgets/",
        "https://github.com/acme/widgets.git",
        "http://www.github.com/acme/widgets",
        "github.com/acme/widgets",
    ],
)
def test_parse_repo_url_accepts_common_forms(url):
    ref = parse_repo_url(url)

    assert (ref.owner, ref.repo) == ("acme", "widgets")
    assert ref.full_name == "acme/widgets"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "https://gitlab.com/acme/widgets",
        "https://github.com/acme",
        "https://github.com/acme/widgets/tree/main",
        "not a url",
    ],
)
def test_parse_repo_url_rejects_other_urls(url):
    with pytest.raises(InvalidRepositoryURLError):
        parse_repo_url(url)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestGitHubClient:
    def test_sends_bearer_token(self):
        handler = RecordingHandler({("GET", "/user"): httpx.Response(200, json={"login": "bot"})})

        login = run_async(_client(handler).get_authenticated_user())

        assert login == "bot"
        assert handler.requests[0].headers["Authorization"] == "Bearer ghp_test"

    def test_authenticated_user_is_cached(self):
        handler = RecordingHandler({("GET", "/user"): httpx.Response(200, json={"login": "bot"})})
        client = _client(handler)

        async def twice():
            await client.get_authenticated_user()
            return await client.get_authenticated_user()

        assert run_async(twice()) == "bot"
        assert len(handler.requests) == 1

    def test_existing_fork_is_reused(self):
        handler = RecordingHandler({
            ("GET", "/user"): httpx.Response(200, json={"login": "bot"}),
            ("GET", "/repos/bot/widgets"): httpx.Response(200, json=_repo_json("bot", "widgets", fork=True)),
        })

        fork = run_async(_client(handler).fork_repository("acme", "widgets"))

        assert fork.full_name == "bot/widgets"
        assert handler.calls("POST", "/repos/acme/widgets/forks") == []

    def test_new_fork_is_created_and_polled(self):
        not_found = httpx.Response(404, json={"message": "Not Found"})
        ready = httpx.Response(200, json=_repo_json("bot", "widgets", fork=True))
        handler = RecordingHandler({
            ("GET", "/user"): httpx.Response(200, json={"login": "bot"}),
            ("GET", "/repos/bot/widgets"): [not_found, not_found, ready],
            ("POST", "/repos/acme/widgets/forks"): httpx.Response(
                202, json=_repo_json("bot", "widgets", fork=True)
            ),
        })

        fork = run_async(_client(handler).fork_repository("acme", "widgets"))

        assert fork.fork
        (create,) = handler.calls("POST", "/repos/acme/widgets/forks")
        assert json.loads(create.content) == {"default_branch_only": True}
        assert len(handler.calls("GET", "/repos/bot/widgets")) == 3

    def test_fork_that_never_appears_fails(self):
        handler = RecordingHandler({
            ("GET", "/user"): httpx.Response(200, json={"login": "bot"}),
            ("POST", "/repos/acme/widgets/forks"): httpx.Response(
                202, json=_repo_json("bot", "widgets", fork=True)
            ),
        })
        client = _client(handler)
        client.fork_poll_attempts = 3

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.fork_repository("acme", "widgets"))

        assert "not ready after 3 attempts" in str(exc_info.value)

    def test_error_status_carries_context(self):
        handler = RecordingHandler({
            ("GET", "/repos/acme/secret"): httpx.Response(403, json={"message": "Forbidden"}),
        })

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler).get_repository("acme", "secret"))

        error = exc_info.value
        assert error.status_code == 403
        assert "Forbidden" in str(error)
        assert error.request_url.endswith("/repos/acme/secret")
        assert not isinstance(error, RateLimitError)

    def test_exhausted_rate_limit_raises_rate_limit_error(self):
        handler = RecordingHandler({
            ("GET", "/repos/acme/widgets"): httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "retry-after": "60"},
                json={"message": "API rate limit exceeded"},
            ),
        })

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_client(handler).get_repository("acme", "widgets"))

        assert exc_info.value.retry_after == 60

    def test_transport_failure_becomes_api_error(self):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(broken).get_repository("acme", "widgets"))

        assert exc_info.value.status_code is None

    def test_list_open_pull_requests_filters_by_head(self):
        pulls = [{
            "number": 7,
            "html_url": "https://github.com/acme/widgets/pull/7",
            "state": "open",
            "title": "Auto PR: docs",
            "head": {"ref": "main", "repo": {"owner": {"login": "bot"}}},
            "user": {"login": "bot"},
        }]
        handler = RecordingHandler({
            ("GET", "/repos/acme/widgets/pulls"): httpx.Response(200, json=pulls),
        })

        result = run_async(
            _client(handler).list_open_pull_requests("acme", "widgets", head="bot:main")
        )

        assert result == [PullRequest(
            number=7,
            html_url="https://github.com/acme/widgets/pull/7",
            title="Auto PR: docs",
            head_ref="main",
            head_owner="bot",
            author="bot",
        )]
        params = handler.requests[0].url.params
        assert params["state"] == "open"
        assert params["head"] == "bot:main"

    def test_create_pull_request_posts_head_and_base(self):
        handler = RecordingHandler({
            ("POST", "/repos/acme/widgets/pulls"): httpx.Response(201, json={
                "number": 12,
                "html_url": "https://github.com/acme/widgets/pull/12",
                "head": {"ref": "auto-pr-bot/1-abcdef12"},
            }),
        })
        request = PRCreateRequest(
            title="Auto PR: docs", body="body", head="bot:auto-pr-bot/1-abcdef12", base="main"
        )

        pr = run_async(_client(handler).create_pull_request("acme", "widgets", request))

        assert pr.number == 12
        sent = json.loads(handler.requests[0].content)
        assert sent == {
            "title": "Auto PR: docs",
            "body": "body",
            "head": "bot:auto-pr-bot/1-abcdef12",
            "base": "main",
        }

    def test_close_pull_request_comments_first(self):
        handler = RecordingHandler({
            ("POST", "/repos/acme/widgets/issues/7/comments"): httpx.Response(201, json={"id": 1}),
            ("PATCH", "/repos/acme/widgets/pulls/7"): httpx.Response(200, json={}),
        })

        run_async(_client(handler).close_pull_request("acme", "widgets", 7, "Superseded"))

        assert [r.method for r in handler.requests] == ["POST", "PATCH"]
        assert json.loads(handler.requests[1].content) == {"state": "closed"}

    def test_delete_branch_tolerates_missing_branch(self):
        handler = RecordingHandler({
            ("DELETE", "/repos/bot/widgets/git/refs/heads/auto-pr-bot/1-abcdef12"):
                httpx.Response(422, json={"message": "Reference does not exist"}),
        })

        run_async(_client(handler).delete_branch("bot", "widgets", "auto-pr-bot/1-abcdef12"))

        assert len(handler.requests) == 1

    def test_add_collaborator_grants_push(self):
        handler = RecordingHandler({
            ("PUT", "/repos/bot/widgets/collaborators/octocat"): httpx.Response(201, json={}),
        })

        run_async(_client(handler).add_collaborator("bot", "widgets", "octocat"))

        assert json.loads(handler.requests[0].content) == {"permission": "push"}


# ---------------------------------------------------------------------------
# PR content
# ---------------------------------------------------------------------------


class TestPRContent:
    def test_title_uses_first_line(self):
        assert build_pr_title("Add docs\nwith details") == "Auto PR: Add docs"

    def test_long_title_is_truncated(self):
        title = build_pr_title("x" * 200)

        assert len(title) == 100
        assert title.endswith("...")

    def test_commit_message(self):
        assert build_commit_message("Add docs", "Added docs.") == "Auto PR: Add docs\n\nAdded docs."

    def test_body_lists_sorted_files_and_footer(self):
        body = build_pr_body("Add docs", "Added docs.", ["b.md", "a.md"])

        assert "**Modification Request:**\nAdd docs" in body
        assert "**Changes Made:**\nAdded docs." in body
        assert "- `a.md`\n- `b.md`" in body
        assert body.endswith(PR_FOOTER)
