"""Commit and pull request text for bot-authored changes."""

from typing import Iterable


PR_TITLE_PREFIX = "Auto PR: "

MAX_TITLE_LENGTH = 100

PR_FOOTER = "*Generated by Auto PR Bot*"


def build_commit_message(prompt: str, explanation: str) -> str:
    message = f"{PR_TITLE_PREFIX}{prompt.strip()}"
    if explanation.strip():
        message += f"\n\n{explanation.strip()}"
    return message


def build_pr_title(prompt: str) -> str:
    """Build a PR title from the first line of the prompt.

    Titles longer than MAX_TITLE_LENGTH are cut and end in "...".

    Example:
        >>> build_pr_title("Add a CONTRIBUTING.md\\nwith setup steps")
        'Auto PR: Add a CONTRIBUTING.md'
    """
    lines = prompt.strip().splitlines()
    first_line = lines[0].strip() if lines else ""
    title = f"{PR_TITLE_PREFIX}{first_line}"
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3].rstrip() + "..."
    return title


def format_file_list(paths: Iterable[str]) -> str:
    return "\n".join(f"- `{path}`" for path in sorted(paths))


def build_pr_body(prompt: str, explanation: str, modified_files: Iterable[str]) -> str:
    """Build the markdown description for a bot pull request."""
    sections = [
        "This is an automated pull request.",
        "",
        "**Modification Request:**",
        prompt.strip(),
        "",
        "**Changes Made:**",
        explanation.strip() or "No explanation provided.",
        "",
        "**Modified Files:**",
        format_file_list(modified_files),
        "",
        "---",
        PR_FOOTER,
    ]
    return "\n".join(sections)


def build_supersede_comment(prompt: str) -> str:
    """Comment left on a pull request closed in favour of a newer one."""
    return (
        "Closing this PR to create a new one with updated changes.\n\n"
        f"New modification request: {prompt.strip()}"
    )
