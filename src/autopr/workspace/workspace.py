"""Run workspace provisioning.

Each pipeline run owns one directory under the configured base path,
named "{forkOwner}-{repo}-{requestId}". The directory is removed when the
run ends, whatever the outcome. Directories left behind by runs that
crashed are swept by age before each new run.

Only directories whose name ends in a request UUID are ever swept, so a
shared base path such as /tmp is safe.
"""

import asyncio
import logging
import re
import shutil
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Union


logger = logging.getLogger(__name__)


WORKSPACE_DIR_PERMISSIONS = 0o755

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

_RUN_DIR_PATTERN = re.compile(
    r"-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
)


class WorkspaceProvisionError(Exception):
    """Raised when a workspace directory cannot be created."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Failed to provision workspace at {path}: {message}")


def _safe(component: str) -> str:
    return _UNSAFE_CHARS.sub("_", component) or "_"


class WorkspaceProvisioner:
    """Creates, releases and sweeps run workspaces.

    Attributes:
        base_path: Directory under which run workspaces are created.
        retention_hours: Age after which a leftover workspace is swept.
    """

    def __init__(
        self,
        base_path: Union[str, Path],
        retention_hours: int = 6,
        clock: Callable[[], float] = time.time,
    ):
        self.base_path = Path(base_path)
        self.retention_hours = retention_hours
        self._clock = clock

    def workspace_path(self, fork_owner: str, repo: str, request_id: str) -> Path:
        name = f"{_safe(fork_owner)}-{_safe(repo)}-{_safe(request_id)}"
        return self.base_path / name

    def create(self, fork_owner: str, repo: str, request_id: str) -> Path:
        """Create an empty workspace directory, replacing any leftover.

        Raises:
            WorkspaceProvisionError: If the directory cannot be created.
        """
        path = self.workspace_path(fork_owner, repo, request_id)
        try:
            if path.exists():
                shutil.rmtree(path)
            path.mkdir(parents=True)
            path.chmod(WORKSPACE_DIR_PERMISSIONS)
        except OSError as exc:
            raise WorkspaceProvisionError(path, str(exc)) from exc

        logger.info(
            "Workspace created",
            extra={"workspace": str(path), "request_id": request_id},
        )
        return path

    def release(self, path: Path) -> None:
        """Remove a workspace. A directory that is already gone is fine."""
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError:
            logger.exception(
                "Failed to remove workspace",
                extra={"workspace": str(path)},
            )
            return
        logger.info("Workspace removed", extra={"workspace": str(path)})

    @asynccontextmanager
    async def workspace(
        self, fork_owner: str, repo: str, request_id: str
    ) -> AsyncIterator[Path]:
        """Provide a run workspace that is removed on every exit path.

        Directory creation and removal run in a worker thread so a large
        teardown does not stall other runs on the event loop.

        Example:
            >>> async with provisioner.workspace("bot", "widgets", request_id) as path:
            ...     await GitRepository.clone(url, path / "repo")
        """
        path = await asyncio.to_thread(self.create, fork_owner, repo, request_id)
        try:
            yield path
        finally:
            await asyncio.to_thread(self.release, path)

    def cleanup_old_workspaces(self) -> int:
        """Remove run workspaces older than the retention period.

        Returns:
            Number of workspaces removed.
        """
        if not self.base_path.exists():
            return 0

        threshold = self._clock() - self.retention_hours * 3600
        removed = 0

        for entry in self.base_path.iterdir():
            if not entry.is_dir() or not _RUN_DIR_PATTERN.search(entry.name):
                continue
            try:
                expired = entry.stat().st_mtime < threshold
            except FileNotFoundError:
                continue
            if expired:
                self.release(entry)
                removed += 1

        if removed:
            logger.info(
                "Workspace cleanup complete",
                extra={"removed_count": removed},
            )
        return removed
