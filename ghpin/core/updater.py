"""
updater.py - Rewriting pinned action references

This module turns update decisions into Update values and applies them to
workflow text. All rewriting goes through render_updated_content, which both
the local apply path and the pull request publisher use, so the two always
produce identical output for identical updates.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..utils.file_handler import is_within_directory, read_text_file, safe_write_file
from .context import RunContext
from .errors import ApplyError, SpanMismatchError
from .provenance import DEFAULT_HISTORY_LIMIT, extend_history, format_annotation
from .scanner import ActionReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Update:
    """A one-shot change of a pinned reference to a new commit"""

    file_path: str
    reference: ActionReference
    old_version: str
    old_hash: str
    new_version: str
    new_hash: str
    original_version: str
    history: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.new_hash == self.old_hash:
            raise ValueError("An update must change the commit id")

    @property
    def new_token(self) -> str:
        return f"{self.reference.full_name}@{self.new_hash}"

    @property
    def annotation(self) -> str:
        return format_annotation(self.new_version, self.history)

    @property
    def description(self) -> str:
        return (
            f"Update {self.reference.full_name} from {self.old_version} to {self.new_version}"
        )


@dataclass
class ApplyReport:
    """Per-update outcome of an apply pass"""

    applied: List[Update] = field(default_factory=list)
    failures: List[Tuple[Update, ApplyError]] = field(default_factory=list)
    files_written: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise the first failure, naming how many updates failed in total"""
        if not self.failures:
            return
        update, error = self.failures[0]
        raise ApplyError(
            f"{len(self.failures)} update(s) could not be applied; first: {error}",
            file_path=update.file_path,
        ) from error


def _token_ends_at(line: str, position: int) -> bool:
    return position == len(line) or line[position] in " \t\"'"


def _find_comment(text: str) -> int:
    """Index of the first YAML comment marker in text, or -1"""
    for index, char in enumerate(text):
        if char == "#" and index > 0 and text[index - 1] in " \t":
            return index
    return -1


def _apply_update(lines: List[str], update: Update) -> None:
    """
    Rewrite one reference in a list of lines in place

    Raises:
        SpanMismatchError: If neither the old nor the new token is at the recorded span
    """
    reference = update.reference
    index = reference.line - 1
    if not 0 <= index < len(lines):
        raise SpanMismatchError(
            f"{update.file_path}:{reference.line} is past the end of the file",
            file_path=update.file_path,
        )

    raw = lines[index]
    eol = "\r" if raw.endswith("\r") else ""
    line = raw[:-1] if eol else raw

    start = reference.column
    new_token = update.new_token

    if line[start : reference.end_column] == reference.token and _token_ends_at(
        line, reference.end_column
    ):
        end = reference.end_column
    elif line[start : start + len(new_token)] == new_token and _token_ends_at(
        line, start + len(new_token)
    ):
        # Already applied
        end = start + len(new_token)
    else:
        raise SpanMismatchError(
            f"{update.file_path}:{reference.line} no longer contains {reference.token}",
            file_path=update.file_path,
        )

    rest = line[end:]
    comment_at = _find_comment(rest)
    body = (rest[:comment_at] if comment_at >= 0 else rest).rstrip()

    lines[index] = f"{line[:start]}{new_token}{body}  {update.annotation}{eol}"


def _ordered(updates: Sequence[Update]) -> List[Update]:
    # Rightmost span first keeps the recorded offsets of earlier spans valid
    return sorted(
        updates, key=lambda u: (u.reference.line, u.reference.column), reverse=True
    )


def render_updated_content(original: str, updates: Sequence[Update]) -> str:
    """
    Apply updates to the content of one file

    Only the reference tokens and their trailing comments change; every other
    byte, line endings included, is preserved. Re-applying an update that is
    already present leaves the content unchanged.

    Args:
        original: Current file content
        updates: Updates targeting this file

    Returns:
        The updated content

    Raises:
        SpanMismatchError: If a reference is no longer at its recorded span
    """
    lines = original.split("\n")
    for update in _ordered(updates):
        _apply_update(lines, update)
    return "\n".join(lines)


def _render_each(
    original: str, updates: Sequence[Update]
) -> Tuple[str, List[Update], List[Tuple[Update, ApplyError]]]:
    """Like render_updated_content, but collects failures per update"""
    lines = original.split("\n")
    applied: List[Update] = []
    failures: List[Tuple[Update, ApplyError]] = []

    for update in _ordered(updates):
        try:
            _apply_update(lines, update)
            applied.append(update)
        except ApplyError as e:
            failures.append((update, e))

    return "\n".join(lines), applied, failures


class UpdateManager:
    """Creates updates and applies them to workflow files"""

    def __init__(
        self,
        base_dir: Optional[str] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        create_backup: bool = False,
    ) -> None:
        """
        Initialize the update manager

        Args:
            base_dir: Directory that edited files must stay within
            history_limit: Maximum number of versions kept in the history trail
            create_backup: Whether to keep a .bak copy of each edited file
        """
        self.base_dir = os.path.abspath(base_dir) if base_dir else None
        self.history_limit = history_limit
        self.create_backup = create_backup
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def create_update(
        self,
        ctx: RunContext,
        file_path: str,
        reference: ActionReference,
        new_version: str,
        new_hash: str,
        old_hash: Optional[str] = None,
    ) -> Optional[Update]:
        """
        Create an update for a reference and its latest version

        Args:
            ctx: Run context
            file_path: Workflow file containing the reference
            reference: Reference as currently pinned
            new_version: Display label of the new version
            new_hash: Commit id to pin to
            old_hash: Commit id the reference currently resolves to; defaults
                to the pinned commit for commit pins

        Returns:
            The Update, or None if the reference already points at new_hash

        Raises:
            ValueError: If new_hash is empty
        """
        ctx.check(f"creating update for {reference.full_name}")

        if not new_hash:
            raise ValueError(f"No commit id given for {reference.full_name}")

        current = old_hash or (reference.version if reference.is_sha_pinned else "")
        if new_hash == current:
            logger.debug("%s already pinned to %s", reference.full_name, new_hash)
            return None

        history = extend_history(reference.history, reference.display_version, self.history_limit)

        return Update(
            file_path=file_path,
            reference=reference,
            old_version=reference.display_version,
            old_hash=current,
            new_version=new_version,
            new_hash=new_hash,
            original_version=history[0],
            history=history,
        )

    def apply_updates(self, ctx: RunContext, updates: Sequence[Update]) -> ApplyReport:
        """
        Apply updates to workflow files

        Each file is read, rewritten in memory and replaced in one pass while
        holding that file's lock.

        Args:
            ctx: Run context
            updates: Updates to apply

        Returns:
            ApplyReport listing applied updates and per-update failures
        """
        report = ApplyReport()

        for file_path, file_updates in updates_by_file(updates).items():
            if ctx.cancelled:
                error = ApplyError(f"Cancelled before updating {file_path}", file_path=file_path)
                report.failures.extend((update, error) for update in file_updates)
                continue

            with self._lock_for(file_path):
                self._apply_file(file_path, file_updates, report)

        return report

    def _lock_for(self, file_path: str) -> threading.Lock:
        key = os.path.realpath(file_path)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def _validate_path(self, file_path: str) -> None:
        if self.base_dir and not is_within_directory(file_path, self.base_dir):
            raise ApplyError(f"Path is outside of allowed directory: {file_path}", file_path=file_path)
        if not os.path.exists(file_path):
            raise ApplyError(f"File not found: {file_path}", file_path=file_path)
        if not os.path.isfile(file_path):
            raise ApplyError(f"Not a regular file: {file_path}", file_path=file_path)

    def _apply_file(self, file_path: str, updates: List[Update], report: ApplyReport) -> None:
        try:
            self._validate_path(file_path)
            original = read_text_file(file_path)
        except ApplyError as e:
            report.failures.extend((update, e) for update in updates)
            return
        except (OSError, UnicodeDecodeError) as e:
            error = ApplyError(f"Error reading {file_path}: {e}", file_path=file_path)
            report.failures.extend((update, error) for update in updates)
            return

        content, applied, failures = _render_each(original, updates)
        report.failures.extend(failures)

        if content != original:
            try:
                safe_write_file(file_path, content, create_backup=self.create_backup)
            except OSError as e:
                error = ApplyError(f"Error writing {file_path}: {e}", file_path=file_path)
                report.failures.extend((update, error) for update in applied)
                return
            report.files_written.append(file_path)
            logger.info("Applied %d update(s) to %s", len(applied), file_path)

        report.applied.extend(applied)


def updates_by_file(updates: Sequence[Update]) -> Dict[str, List[Update]]:
    """Group updates by the file they touch, keeping first-seen order"""
    grouped: Dict[str, List[Update]] = {}
    for update in updates:
        grouped.setdefault(update.file_path, []).append(update)
    return grouped
