"""Pytest configuration and shared fixtures for all tests."""

import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from src.autopr.state.store import DynamoDBStore


class FakeClock:
    """Settable clock for code that takes a `clock` callable."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDynamoDBClient:
    """In-memory stand-in for the boto3 DynamoDB client.

    Items are kept in their serialized attribute-value form, keyed by the
    requestId partition key. Queries against the address index filter on
    ipAddress and timestamp, and page through results when page_size is set.
    """

    def __init__(self, page_size: Optional[int] = None):
        self.items: Dict[str, Dict[str, Any]] = {}
        self.page_size = page_size
        self.errors: List[Exception] = []
        self.put_calls = 0
        self.query_calls = 0

    def _maybe_fail(self) -> None:
        if self.errors:
            raise self.errors.pop(0)

    def put_item(self, TableName: str, Item: Dict[str, Any]) -> Dict[str, Any]:
        self.put_calls += 1
        self._maybe_fail()
        self.items[Item["requestId"]["S"]] = dict(Item)
        return {}

    def get_item(
        self, TableName: str, Key: Dict[str, Any], ConsistentRead: bool = False
    ) -> Dict[str, Any]:
        self._maybe_fail()
        item = self.items.get(Key["requestId"]["S"])
        return {"Item": dict(item)} if item else {}

    def query(self, **kwargs: Any) -> Dict[str, Any]:
        self.query_calls += 1
        self._maybe_fail()
        values = kwargs["ExpressionAttributeValues"]
        address = values[":ip"]["S"]
        since = int(values[":since"]["N"])
        matches = [
            item
            for _, item in sorted(self.items.items())
            if item.get("ipAddress", {}).get("S") == address
            and int(item["timestamp"]["N"]) >= since
        ]

        if self.page_size is None:
            return {"Items": matches}

        start = int(kwargs.get("ExclusiveStartKey", {}).get("offset", {}).get("N", 0))
        end = start + self.page_size
        response: Dict[str, Any] = {"Items": matches[start:end]}
        if end < len(matches):
            response["LastEvaluatedKey"] = {"offset": {"N": str(end)}}
        return response


def make_client_error(code: str, message: str = "boom", operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_dynamodb() -> FakeDynamoDBClient:
    return FakeDynamoDBClient()


@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors with a given error code."""
    return make_client_error


@pytest.fixture
def store(fake_dynamodb) -> DynamoDBStore:
    return DynamoDBStore(
        table_name="auto-pr-bot-status-test",
        dynamodb_client=fake_dynamodb,
        sleep=lambda _seconds: None,
    )


# ---------------------------------------------------------------------------
# Git fixtures
# ---------------------------------------------------------------------------

def _git(*args: str, cwd: Optional[Path] = None) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def make_bare_repository(root: Path, name: str, files: Dict[str, str]) -> Path:
    """Create a bare repository on branch main with one commit of `files`."""
    bare = root / f"{name}.git"
    seed = root / f"{name}-seed"
    _git("init", "--bare", "--initial-branch=main", str(bare))
    _git("init", "--initial-branch=main", str(seed))
    for rel_path, content in files.items():
        target = seed / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    _git("-c", "user.name=Seed", "-c", "user.email=seed@example.com",
         "add", "-A", cwd=seed)
    _git("-c", "user.name=Seed", "-c", "user.email=seed@example.com",
         "commit", "-m", "Initial commit", cwd=seed)
    _git("push", str(bare), "main", cwd=seed)
    shutil.rmtree(seed)
    return bare


@pytest.fixture
def git_bare_factory(tmp_path):
    """Factory creating bare repositories under a per-test directory."""
    root = tmp_path / "remotes"
    root.mkdir()

    def _factory(name: str, files: Optional[Dict[str, str]] = None) -> Path:
        return make_bare_repository(root, name, files or {"README.md": "# Widgets\n"})

    return _factory


@pytest.fixture
def git_show():
    """Read a file or listing from a (bare) repository."""

    def _show(repo: Path, *args: str) -> str:
        return _git(*args, cwd=repo)

    return _show
