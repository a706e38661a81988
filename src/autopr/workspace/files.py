"""File access inside a run workspace.

Builds the file tree shown to the model, reads files for it (confined to the
workspace, text only, long files truncated) and writes generated files back.
"""

import logging
import os
from pathlib import Path
from typing import List, Union


logger = logging.getLogger(__name__)


MAX_TREE_ENTRIES = 2000

TRUNCATE_ABOVE_LINES = 500
TRUNCATE_HEAD_LINES = 200
TRUNCATE_TAIL_LINES = 100

BINARY_SNIFF_BYTES = 8192

SKIPPED_DIRECTORIES = frozenset({".git"})


class FileReadError(Exception):
    """Raised when a workspace file cannot be read as text.

    Attributes:
        path: Repository-relative path that was requested.
        missing: True when the file does not exist.
    """

    def __init__(self, path: str, message: str, missing: bool = False):
        self.path = path
        self.missing = missing
        super().__init__(f"{path}: {message}")


def resolve_in_workspace(root: Union[str, Path], relative_path: str) -> Path:
    """Resolve a repository-relative path, refusing anything outside root.

    Raises:
        FileReadError: If the path escapes the workspace.
    """
    root_path = Path(root).resolve()
    candidate = (root_path / relative_path.lstrip("/")).resolve()
    if candidate == root_path or root_path not in candidate.parents:
        raise FileReadError(relative_path, "path is outside the workspace")
    if SKIPPED_DIRECTORIES.intersection(candidate.relative_to(root_path).parts):
        raise FileReadError(relative_path, "path is inside the git directory")
    return candidate


def build_file_tree(root: Union[str, Path], max_entries: int = MAX_TREE_ENTRIES) -> str:
    """Render the workspace as an indented tree, two spaces per level.

    Directories end in "/". The .git directory is skipped. Entries beyond
    max_entries are replaced by a single count line.
    """
    root_path = Path(root)
    lines: List[str] = []
    omitted = 0

    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
        relative = Path(dirpath).relative_to(root_path)
        depth = len(relative.parts)

        if depth > 0:
            if len(lines) < max_entries:
                lines.append(f"{'  ' * (depth - 1)}{relative.name}/")
            else:
                omitted += 1

        for name in sorted(filenames):
            if len(lines) < max_entries:
                lines.append(f"{'  ' * depth}{name}")
            else:
                omitted += 1

    if omitted:
        lines.append(f"... [{omitted} more entries omitted] ...")

    return "\n".join(lines) + ("\n" if lines else "")


def truncate_content(content: str) -> str:
    """Shorten long files, keeping the head and tail.

    Files with more than 500 lines keep the first 200 and the last 100,
    joined by a marker naming how many lines were left out.
    """
    lines = content.splitlines()
    if len(lines) <= TRUNCATE_ABOVE_LINES:
        return content

    omitted = len(lines) - TRUNCATE_HEAD_LINES - TRUNCATE_TAIL_LINES
    kept = (
        lines[:TRUNCATE_HEAD_LINES]
        + [f"... [{omitted} lines omitted] ..."]
        + lines[-TRUNCATE_TAIL_LINES:]
    )
    return "\n".join(kept)


def read_file_content(root: Union[str, Path], relative_path: str) -> str:
    """Read a workspace file as UTF-8 text for the model.

    Raises:
        FileReadError: If the path escapes the workspace, does not exist,
            is not a regular file, or is not UTF-8 text.
    """
    path = resolve_in_workspace(root, relative_path)

    if not path.exists():
        raise FileReadError(relative_path, "file does not exist", missing=True)
    if not path.is_file():
        raise FileReadError(relative_path, "not a regular file")

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileReadError(relative_path, f"read failed: {exc}") from exc

    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        raise FileReadError(relative_path, "binary file")

    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FileReadError(relative_path, "not valid UTF-8 text") from exc

    return truncate_content(content)


def ensure_trailing_newline(content: str) -> str:
    """Append a newline unless the content is empty or already ends in one."""
    if content and not content.endswith("\n"):
        return content + "\n"
    return content


def write_file(root: Union[str, Path], relative_path: str, content: str) -> Path:
    """Write generated content into the workspace as UTF-8 bytes.

    Parent directories are created as needed.
    """
    path = resolve_in_workspace(root, relative_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(ensure_trailing_newline(content).encode("utf-8"))
    logger.debug("Wrote file", extra={"path": relative_path})
    return path
