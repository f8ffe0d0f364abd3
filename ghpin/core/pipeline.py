"""
pipeline.py - The scan, check, update and dispatch run

run_pipeline drives one run end to end. Per-item failures (an unreadable
file, a failed lookup) are logged, recorded in the summary and skipped;
failures that make the whole batch meaningless are raised. Rate-limited
lookups are retried here with exponential backoff, since the checker itself
never retries.
"""

import fnmatch
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .checker import UpdateCheck
from .context import RunContext
from .errors import CancelledError, ParseError, RateLimitError, ResolutionError
from .interfaces import ChangeRequestPublisher, VersionResolver
from .publisher import PublishResult
from .scanner import ActionReference, WorkflowScanner
from .updater import Update, UpdateManager

logger = logging.getLogger(__name__)

MODES = ("preview", "stage", "publish")

# Upper bound for a single pause between rate-limited attempts
MAX_RATE_LIMIT_WAIT = 60


@dataclass
class ItemError:
    """A failure confined to one file or reference"""

    stage: str
    target: str
    message: str


@dataclass
class RunSummary:
    """What a run found and did"""

    mode: str
    files_scanned: int = 0
    references_found: int = 0
    checks: int = 0
    updates: List[Update] = field(default_factory=list)
    applied: List[Update] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)
    publish_result: Optional[PublishResult] = None

    def add_error(self, stage: str, target: str, error: Exception) -> None:
        logger.warning("%s failed for %s: %s", stage.capitalize(), target, error)
        self.errors.append(ItemError(stage, target, str(error)))


def is_ignored(reference: ActionReference, patterns: Sequence[str]) -> bool:
    """Check a reference against fnmatch patterns on owner/name"""
    return any(
        fnmatch.fnmatch(reference.full_name, pattern) or fnmatch.fnmatch(reference.repository, pattern)
        for pattern in patterns
    )


def collect_references(
    scanner: WorkflowScanner, root: str, summary: RunSummary, ignore: Sequence[str] = ()
) -> List[ActionReference]:
    """
    Discover workflow files and extract their references

    Args:
        scanner: Workflow scanner
        root: Workflows directory
        summary: Summary receiving counts and per-file errors
        ignore: fnmatch patterns of actions to leave alone

    Returns:
        References in file order

    Raises:
        DiscoveryError: If the workflows directory cannot be read
    """
    files = scanner.scan_workflows(root)
    summary.files_scanned = len(files)

    references: List[ActionReference] = []
    for file_path in files:
        try:
            found = scanner.parse_action_references(file_path)
        except ParseError as e:
            summary.add_error("parse", file_path, e)
            continue

        for reference in found:
            if is_ignored(reference, ignore):
                logger.info("Ignoring %s at %s:%d", reference.token, file_path, reference.line)
                continue
            references.append(reference)

    summary.references_found = len(references)
    return references


def _deadline_reached(ctx: RunContext) -> Callable[[RetryCallState], bool]:
    def stop(retry_state: RetryCallState) -> bool:
        return ctx.cancelled or ctx.remaining() == 0

    return stop


def _wait_within_deadline(ctx: RunContext, backoff: float) -> Callable[[RetryCallState], float]:
    """Exponential pauses that never sleep past the run deadline"""
    exponential = wait_exponential(multiplier=backoff, max=MAX_RATE_LIMIT_WAIT)

    def wait(retry_state: RetryCallState) -> float:
        delay = exponential(retry_state)
        remaining = ctx.remaining()
        return delay if remaining is None else min(delay, remaining)

    return wait


def check_with_backoff(
    ctx: RunContext,
    checker: VersionResolver,
    reference: ActionReference,
    attempts: int = 3,
    backoff: float = 2,
) -> UpdateCheck:
    """
    Check one reference, retrying when GitHub reports a rate limit

    Args:
        ctx: Run context; no retry is started once it is cancelled or expired
        checker: Version resolver
        reference: Reference to check
        attempts: Maximum number of attempts, the first one included
        backoff: Pause before the first retry in seconds, doubled on each retry

    Returns:
        UpdateCheck for the reference

    Raises:
        RateLimitError: If the last attempt is still rate limited
        ResolutionError: If a lookup fails for any other reason
    """

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Rate limited while checking %s (attempt %d/%d), retrying in %.1fs",
            reference.token,
            retry_state.attempt_number,
            attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts) | _deadline_reached(ctx),
        wait=_wait_within_deadline(ctx, backoff),
        retry=retry_if_exception_type(RateLimitError),
        before_sleep=log_retry,
        reraise=True,
    )
    return retrying(checker.is_update_available, ctx, reference)


def check_references(
    ctx: RunContext,
    checker: VersionResolver,
    references: Sequence[ActionReference],
    summary: RunSummary,
    max_workers: int = 4,
    attempts: int = 3,
    backoff: float = 2,
) -> Dict[Tuple[str, str, int], UpdateCheck]:
    """
    Check every reference for an available update, in parallel

    Args:
        ctx: Run context
        checker: Version resolver
        references: References to check
        summary: Summary receiving counts and per-reference errors
        max_workers: Maximum number of concurrent checks
        attempts: Attempts per reference while rate limited
        backoff: Initial pause between rate-limited attempts in seconds

    Returns:
        Successful checks keyed by (file, owner/name, line)
    """
    results: Dict[Tuple[str, str, int], UpdateCheck] = {}
    if not references:
        return results

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(check_with_backoff, ctx, checker, reference, attempts, backoff): reference
            for reference in references
        }
        for future in as_completed(futures):
            reference = futures[future]
            summary.checks += 1
            try:
                results[reference.key] = future.result()
            except (ResolutionError, CancelledError) as e:
                summary.add_error("check", f"{reference.token} ({reference.file_path}:{reference.line})", e)

    return results


def build_updates(
    ctx: RunContext,
    manager: UpdateManager,
    references: Sequence[ActionReference],
    results: Dict[Tuple[str, str, int], UpdateCheck],
    summary: RunSummary,
) -> List[Update]:
    """Turn positive checks into updates, in file order"""
    updates: List[Update] = []
    for reference in references:
        check = results.get(reference.key)
        if check is None or not check.available:
            continue

        try:
            update = manager.create_update(
                ctx,
                reference.file_path,
                reference,
                check.latest_version,
                check.latest_hash,
                old_hash=check.current_hash,
            )
        except CancelledError as e:
            summary.add_error("update", reference.token, e)
            continue

        if update is not None:
            updates.append(update)

    return updates


def run_pipeline(
    config: Dict[str, Any],
    ctx: RunContext,
    checker: VersionResolver,
    manager: UpdateManager,
    publisher: Optional[ChangeRequestPublisher] = None,
    scanner: Optional[WorkflowScanner] = None,
    mode: str = "preview",
    repo_root: str = ".",
    branch: Optional[str] = None,
) -> RunSummary:
    """
    Run the whole update pipeline

    Args:
        config: Effective configuration
        ctx: Run context
        checker: Version resolver
        manager: Update manager used to build and, in stage mode, apply updates
        publisher: Pull request publisher, required in publish mode
        scanner: Workflow scanner, a default one when omitted
        mode: "preview", "stage" or "publish"
        repo_root: Local repository root
        branch: Work branch for publish mode; generated when omitted

    Returns:
        RunSummary of the run

    Raises:
        ValueError: If the mode is unknown or publish mode has no publisher
        DiscoveryError: If the workflows directory cannot be read
        ApplyError: If any update fails to apply in stage mode
        PublishError: If the pull request cannot be created
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
    if mode == "publish" and publisher is None:
        raise ValueError("Publish mode requires a publisher")

    scanner = scanner or WorkflowScanner()
    summary = RunSummary(mode=mode)

    workflows_path = config.get("workflows_path", ".github/workflows")
    root = os.path.join(repo_root, workflows_path)

    references = collect_references(scanner, root, summary, config.get("ignore_actions", []))
    results = check_references(
        ctx,
        checker,
        references,
        summary,
        max_workers=config.get("max_workers", 4),
        attempts=config.get("rate_limit_attempts", 3),
        backoff=config.get("rate_limit_backoff", 2),
    )
    summary.updates = build_updates(ctx, manager, references, results, summary)

    logger.info(
        "%d reference(s) in %d file(s), %d update(s) available",
        summary.references_found,
        summary.files_scanned,
        len(summary.updates),
    )

    if not summary.updates or mode == "preview":
        return summary

    if mode == "stage":
        report = manager.apply_updates(ctx, summary.updates)
        summary.applied = list(report.applied)
        for update, error in report.failures:
            summary.add_error("apply", f"{update.reference.token} ({update.file_path})", error)
        report.raise_for_failures()
        return summary

    assert publisher is not None
    publisher.set_workflows_path(workflows_path)
    summary.publish_result = publisher.create_pr(ctx, summary.updates, branch=branch)
    return summary


def summary_to_dict(summary: RunSummary) -> Dict[str, Any]:
    """Convert a run summary to a JSON-serializable dictionary"""
    result = summary.publish_result
    return {
        "mode": summary.mode,
        "files_scanned": summary.files_scanned,
        "references_found": summary.references_found,
        "checks": summary.checks,
        "updates": [
            {
                "file": update.file_path,
                "line": update.reference.line,
                "action": update.reference.full_name,
                "from": update.old_version,
                "from_hash": update.old_hash,
                "to": update.new_version,
                "to_hash": update.new_hash,
                "original_version": update.original_version,
                "history": list(update.history),
            }
            for update in summary.updates
        ],
        "applied": len(summary.applied),
        "errors": [
            {"stage": error.stage, "target": error.target, "message": error.message}
            for error in summary.errors
        ],
        "pull_request": (
            {
                "number": result.number,
                "url": result.url,
                "branch": result.branch,
                "commit": result.commit_sha,
            }
            if result
            else None
        ),
    }


def format_summary(summary: RunSummary) -> str:
    """
    Render a run summary as plain text

    Args:
        summary: Run summary

    Returns:
        Multi-line text report
    """
    lines: List[str] = []

    for update in summary.updates:
        lines.append(
            f"{update.file_path}: {update.reference.full_name} "
            f"from {update.old_version} to {update.new_version} ({update.new_hash})"
        )

    if summary.errors:
        lines.append("")
        lines.append(f"{len(summary.errors)} error(s):")
        for error in summary.errors:
            lines.append(f"  [{error.stage}] {error.target}: {error.message}")

    lines.append("")
    lines.append(
        f"Scanned {summary.files_scanned} file(s), {summary.references_found} reference(s), "
        f"{len(summary.updates)} update(s) available"
    )

    if summary.mode == "stage":
        lines.append(f"Applied {len(summary.applied)} update(s) to the working tree")
    elif summary.mode == "publish":
        if summary.publish_result:
            result = summary.publish_result
            lines.append(f"Pull request #{result.number}: {result.url} (branch {result.branch})")
        elif summary.updates:
            lines.append("No pull request created; the default branch already has these changes")
    elif summary.updates:
        lines.append("Dry run: no files were changed")

    return "\n".join(lines).lstrip("\n")
