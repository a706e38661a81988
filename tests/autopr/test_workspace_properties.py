"""Property-based tests for workspace file handling.

Verifies that written files read back byte-identical apart from an added
trailing newline, that long files are truncated to a head and tail, and
that paths never escape the workspace.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from src.autopr.workspace.files import (
    TRUNCATE_ABOVE_LINES,
    TRUNCATE_HEAD_LINES,
    TRUNCATE_TAIL_LINES,
    FileReadError,
    ensure_trailing_newline,
    read_file_content,
    resolve_in_workspace,
    truncate_content,
    write_file,
)


# =============================================================================
# Hypothesis Strategies
# =============================================================================

text_content = st.text(
    alphabet=st.characters(blacklist_characters="\x00", blacklist_categories=("Cs",)),
    max_size=400,
)

path_segment = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyz0123456789_-",
    min_size=1,
    max_size=12,
)


@st.composite
def relative_paths(draw: st.DrawFn) -> str:
    segments = draw(st.lists(path_segment, min_size=1, max_size=4))
    return "/".join(segments) + draw(st.sampled_from(["", ".md", ".py", ".txt"]))


# =============================================================================
# Properties
# =============================================================================


@settings(max_examples=100)
@given(relative_path=relative_paths(), content=text_content)
def test_written_file_reads_back_with_trailing_newline(relative_path, content):
    """Re-reading a written file yields the content plus at most one newline."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        write_file(root, relative_path, content)

        raw = (root / relative_path).read_bytes()

    assert raw == ensure_trailing_newline(content).encode("utf-8")
    decoded = raw.decode("utf-8")
    assert decoded == content or decoded == content + "\n"


@settings(max_examples=100)
@given(line_count=st.integers(min_value=0, max_value=1200))
def test_truncation_keeps_head_and_tail(line_count):
    """Files over the limit keep the first and last lines with a marker."""
    lines = [f"line {i}" for i in range(line_count)]
    content = "\n".join(lines)

    result = truncate_content(content)

    if line_count <= TRUNCATE_ABOVE_LINES:
        assert result == content
    else:
        kept = result.split("\n")
        omitted = line_count - TRUNCATE_HEAD_LINES - TRUNCATE_TAIL_LINES
        assert kept[:TRUNCATE_HEAD_LINES] == lines[:TRUNCATE_HEAD_LINES]
        assert kept[TRUNCATE_HEAD_LINES] == f"... [{omitted} lines omitted] ..."
        assert kept[TRUNCATE_HEAD_LINES + 1:] == lines[-TRUNCATE_TAIL_LINES:]


@settings(max_examples=100)
@given(depth=st.integers(min_value=1, max_value=5), name=path_segment)
def test_parent_traversal_is_refused(depth, name):
    """A path climbing above the workspace never resolves."""
    with tempfile.TemporaryDirectory() as tmp:
        with pytest.raises(FileReadError):
            resolve_in_workspace(tmp, "../" * depth + name)


def test_read_round_trip_of_written_file(tmp_path):
    write_file(tmp_path, "docs/CONTRIBUTING.md", "# Contributing")

    assert read_file_content(tmp_path, "docs/CONTRIBUTING.md") == "# Contributing\n"
