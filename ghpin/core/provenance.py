"""
provenance.py - The version history annotation written after pinned references

A pinned reference carries its display version and the versions it replaced:

    uses: actions/checkout@<40-hex sha>  # v4.2.2 (history: v2 -> v3.6.0)

The first history entry is the original version ever recorded for the
reference, the last one is the version superseded most recently. Commit ids
are not part of the annotation; they appear in the commit message and the
pull request body instead.
"""

import re
from typing import List, Optional, Sequence, Tuple

from ..utils.version import is_commit_sha, looks_like_version

DEFAULT_HISTORY_LIMIT = 5
HISTORY_SEPARATOR = " -> "

ANNOTATION_PATTERN = re.compile(
    r"^(?P<label>[^\s()]+)(?:\s+\(history:\s*(?P<history>[^)]*)\))?\s*$"
)


def parse_annotation(comment: str) -> Tuple[Optional[str], Tuple[str, ...]]:
    """
    Parse a trailing comment into a display label and a history trail

    Args:
        comment: Comment text without the leading '#'

    Returns:
        Tuple of (label, history). The label is None when the comment does
        not start with a version-like word.
    """
    text = comment.strip()
    match = ANNOTATION_PATTERN.match(text)
    if not match:
        # Free-form comments may still start with a version: "# v4 pinned by hand"
        first = text.split(None, 1)[0] if text else ""
        return (first if first and looks_like_version(first) else None), ()

    label = match.group("label")
    if not (looks_like_version(label) or is_commit_sha(label)):
        return None, ()

    history_text = match.group("history")
    history: Tuple[str, ...] = ()
    if history_text:
        history = tuple(
            entry.strip() for entry in history_text.split("->") if entry.strip()
        )

    return label, history


def extend_history(
    history: Sequence[str], superseded: str, limit: int = DEFAULT_HISTORY_LIMIT
) -> Tuple[str, ...]:
    """
    Append the superseded version to a history trail

    The original (first) entry is always kept; beyond that only the most
    recent entries are retained so the trail holds at most `limit` entries.
    A superseded version equal to the last entry is not repeated.

    Args:
        history: Existing trail, oldest first
        superseded: Version being replaced
        limit: Maximum number of entries to keep (at least 2)

    Returns:
        The new trail
    """
    entries: List[str] = list(history)
    if not entries or entries[-1] != superseded:
        entries.append(superseded)

    limit = max(2, limit)
    if len(entries) > limit:
        entries = [entries[0]] + entries[-(limit - 1) :]

    return tuple(entries)


def format_annotation(version: str, history: Sequence[str]) -> str:
    """
    Build the comment written after a pinned reference

    Args:
        version: Display version of the new pin
        history: Trail of previous versions, oldest first

    Returns:
        Comment text including the leading '#'
    """
    if not history:
        return f"# {version}"
    return f"# {version} (history: {HISTORY_SEPARATOR.join(history)})"
