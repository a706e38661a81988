"""Run workspaces: provisioning, git operations and file access."""

from src.autopr.workspace.files import (
    FileReadError,
    build_file_tree,
    ensure_trailing_newline,
    read_file_content,
    truncate_content,
    write_file,
)
from src.autopr.workspace.git import (
    GitCommandError,
    GitRepository,
    authenticated_url,
)
from src.autopr.workspace.workspace import (
    WorkspaceProvisionError,
    WorkspaceProvisioner,
)

__all__ = [
    "FileReadError",
    "GitCommandError",
    "GitRepository",
    "WorkspaceProvisionError",
    "WorkspaceProvisioner",
    "authenticated_url",
    "build_file_tree",
    "ensure_trailing_newline",
    "read_file_content",
    "truncate_content",
    "write_file",
]
