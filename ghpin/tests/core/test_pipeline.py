"""
test_pipeline.py - Tests for the end-to-end update run
"""

import json
import logging
import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from github import GithubException

from ghpin.core import (
    ApplyError,
    DiscoveryError,
    NotFoundError,
    PublishError,
    RateLimitError,
    RunContext,
    UpdateManager,
    format_summary,
    run_pipeline,
    summary_to_dict,
)
from ghpin.core.checker import UpdateCheck, VersionChecker
from ghpin.core.config import DEFAULT_CONFIG
from ghpin.core.publisher import PublishResult

OLD_SHA = "a" * 40
NEW_SHA = "deadbeef" * 5


def _config(**overrides):
    config = dict(DEFAULT_CONFIG)
    config.update(overrides)
    return config


def _write_workflow(repo_root, name, content):
    workflows = Path(repo_root) / ".github" / "workflows"
    workflows.mkdir(parents=True, exist_ok=True)
    path = workflows / name
    path.write_bytes(content.encode("utf-8"))
    return str(path)


def test_preview_lists_updates_without_writing(ctx, mock_repo, sample_workflow_file, mock_checker):
    before = Path(sample_workflow_file).read_bytes()

    summary = run_pipeline(
        _config(), ctx, mock_checker, UpdateManager(base_dir=mock_repo), mode="preview", repo_root=mock_repo
    )

    assert summary.files_scanned == 1
    assert summary.references_found == 3
    assert summary.checks == 3
    assert [u.reference.full_name for u in summary.updates] == [
        "actions/checkout",
        "actions/setup-python",
        "github/codeql-action/init",
    ]
    assert summary.errors == []
    assert Path(sample_workflow_file).read_bytes() == before

    text = format_summary(summary)
    assert f"{sample_workflow_file}: actions/checkout from v2 to v4" in text
    assert "Dry run" in text


def test_failed_checks_are_isolated(ctx, temp_dir, caplog):
    """K references with M failing lookups give K - M updates and M logged errors."""
    content = "".join(f"      - uses: owner/action{i}@v1\n" for i in range(6))
    _write_workflow(temp_dir, "ci.yml", content)

    def check(ctx, ref):
        if ref.name == "action1":
            raise NotFoundError("gone", action=ref.repository)
        if ref.name == "action4":
            raise RateLimitError("slow down", action=ref.repository)
        return UpdateCheck(True, "v2", NEW_SHA, OLD_SHA)

    checker = MagicMock()
    checker.is_update_available.side_effect = check

    with caplog.at_level(logging.WARNING):
        summary = run_pipeline(
            _config(max_workers=3, rate_limit_backoff=0), ctx, checker, UpdateManager(), repo_root=temp_dir
        )

    assert summary.checks == 6
    assert len(summary.updates) == 4
    assert len(summary.errors) == 2
    assert {e.stage for e in summary.errors} == {"check"}
    assert sum("Check failed" in record.getMessage() for record in caplog.records) == 2

    # Updates keep file order regardless of completion order
    assert [u.reference.line for u in summary.updates] == [1, 3, 4, 6]


def test_unavailable_updates_are_skipped(ctx, temp_dir):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v4\n")
    checker = MagicMock()
    checker.is_update_available.return_value = UpdateCheck(False, "v4", NEW_SHA, NEW_SHA)

    summary = run_pipeline(_config(), ctx, checker, UpdateManager(), repo_root=temp_dir)

    assert summary.updates == []
    assert summary.checks == 1


def test_parse_errors_skip_the_file(ctx, temp_dir, mock_checker):
    _write_workflow(temp_dir, "good.yml", "      - uses: actions/checkout@v2\n")
    bad = Path(temp_dir) / ".github" / "workflows" / "bad.yml"
    bad.write_bytes(b"\xff\xfe")

    summary = run_pipeline(_config(), ctx, mock_checker, UpdateManager(), repo_root=temp_dir)

    assert summary.files_scanned == 2
    assert len(summary.updates) == 1
    assert summary.errors[0].stage == "parse"
    assert summary.errors[0].target == str(bad)


def test_ignore_actions(ctx, temp_dir, mock_checker):
    _write_workflow(
        temp_dir,
        "ci.yml",
        "      - uses: actions/checkout@v2\n      - uses: github/codeql-action/init@v2\n",
    )

    summary = run_pipeline(
        _config(ignore_actions=["github/codeql-action"]), ctx, mock_checker, UpdateManager(), repo_root=temp_dir
    )

    assert [u.reference.full_name for u in summary.updates] == ["actions/checkout"]
    assert summary.references_found == 1


def test_missing_workflows_directory(ctx, temp_dir, mock_checker):
    summary = run_pipeline(_config(), ctx, mock_checker, UpdateManager(), repo_root=temp_dir)

    assert summary.files_scanned == 0
    assert summary.updates == []
    mock_checker.is_update_available.assert_not_called()


def test_unreadable_workflows_directory_is_fatal(ctx, temp_dir, mock_checker):
    Path(temp_dir, ".github").mkdir()
    Path(temp_dir, ".github", "workflows").write_text("not a directory")

    with pytest.raises(DiscoveryError):
        run_pipeline(_config(), ctx, mock_checker, UpdateManager(), repo_root=temp_dir)


def test_stage_applies_updates(ctx, temp_dir, mock_checker):
    path = _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")

    summary = run_pipeline(
        _config(), ctx, mock_checker, UpdateManager(base_dir=temp_dir), mode="stage", repo_root=temp_dir
    )

    assert len(summary.applied) == 1
    assert Path(path).read_text() == f"      - uses: actions/checkout@{NEW_SHA}  # v4 (history: v2)\n"
    assert "Applied 1 update(s)" in format_summary(summary)


def test_stage_failure_is_fatal(ctx, temp_dir, mock_checker):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    manager = UpdateManager(base_dir=os.path.join(temp_dir, "elsewhere"))

    with pytest.raises(ApplyError):
        run_pipeline(_config(), ctx, mock_checker, manager, mode="stage", repo_root=temp_dir)


def test_publish_hands_updates_to_publisher(ctx, temp_dir, mock_checker):
    path = _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    publisher = MagicMock()
    publisher.create_pr.return_value = PublishResult(5, "https://example.test/pr/5", "b", NEW_SHA)

    summary = run_pipeline(
        _config(workflows_path=".github/workflows"),
        ctx,
        mock_checker,
        UpdateManager(),
        publisher=publisher,
        mode="publish",
        repo_root=temp_dir,
        branch="b",
    )

    publisher.set_workflows_path.assert_called_once_with(".github/workflows")
    args, kwargs = publisher.create_pr.call_args
    assert args[0] is ctx
    assert [u.file_path for u in args[1]] == [path]
    assert kwargs["branch"] == "b"
    assert summary.publish_result.number == 5
    assert "Pull request #5" in format_summary(summary)

    # The local file is untouched in publish mode
    assert Path(path).read_text() == "      - uses: actions/checkout@v2\n"


def test_publish_error_is_fatal(ctx, temp_dir, mock_checker):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    publisher = MagicMock()
    publisher.create_pr.side_effect = PublishError("boom", state="tree_created")

    with pytest.raises(PublishError):
        run_pipeline(
            _config(), ctx, mock_checker, UpdateManager(), publisher=publisher, mode="publish", repo_root=temp_dir
        )


def test_publish_without_updates_skips_publisher(ctx, temp_dir):
    _write_workflow(temp_dir, "ci.yml", "on: push\n")
    publisher = MagicMock()

    summary = run_pipeline(
        _config(), ctx, MagicMock(), UpdateManager(), publisher=publisher, mode="publish", repo_root=temp_dir
    )

    publisher.create_pr.assert_not_called()
    assert summary.publish_result is None


def test_invalid_mode(ctx, mock_checker):
    with pytest.raises(ValueError):
        run_pipeline(_config(), ctx, mock_checker, UpdateManager(), mode="yolo")

    with pytest.raises(ValueError):
        run_pipeline(_config(), ctx, mock_checker, UpdateManager(), mode="publish")


def test_cancelled_run_records_errors(temp_dir):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    ctx = RunContext()
    ctx.cancel()
    checker = MagicMock()
    checker.is_update_available.side_effect = lambda c, ref: c.check("checking")

    summary = run_pipeline(_config(), ctx, checker, UpdateManager(), repo_root=temp_dir)

    assert summary.updates == []
    assert len(summary.errors) == 1


def test_summary_to_dict(ctx, mock_repo, mock_checker):
    summary = run_pipeline(_config(), ctx, mock_checker, UpdateManager(), repo_root=mock_repo)
    data = summary_to_dict(summary)

    assert json.loads(json.dumps(data)) == data
    assert data["mode"] == "preview"
    assert data["references_found"] == 3
    assert data["updates"][0]["action"] == "actions/checkout"
    assert data["updates"][0]["to_hash"] == NEW_SHA
    assert data["updates"][0]["history"] == ["v2"]
    assert data["pull_request"] is None


class _LazyRef:
    """Ref whose lookup only happens when its object is read, as with PyGithub's lazy objects"""

    def __init__(self, name, commits):
        self._name = name
        self._commits = commits

    @property
    def object(self):
        if self._name not in self._commits:
            raise GithubException(404, {"message": "Not Found"})
        target = MagicMock()
        target.type = "commit"
        target.sha = self._commits[self._name]
        return target


def test_missing_tag_does_not_abort_the_run(ctx, temp_dir):
    """A pin on a tag that does not exist is one error; the other pin still updates."""
    _write_workflow(
        temp_dir,
        "ci.yml",
        "      - uses: actions/checkout@v2\n      - uses: actions/checkout@nosuchtag\n",
    )
    tag = MagicMock()
    tag.name = "v4"
    tag.commit.sha = NEW_SHA
    repo = MagicMock()
    repo.get_tags.return_value = [tag]
    repo.get_git_ref.side_effect = lambda name: _LazyRef(name, {"tags/v2": OLD_SHA, "tags/v4": NEW_SHA})
    github = MagicMock()
    github.get_repo.return_value = repo

    summary = run_pipeline(_config(), ctx, VersionChecker(github=github), UpdateManager(), repo_root=temp_dir)

    assert [u.reference.version for u in summary.updates] == ["v2"]
    assert len(summary.errors) == 1
    assert "nosuchtag" in summary.errors[0].target


def test_rate_limited_checks_are_retried(ctx, temp_dir):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    checker = MagicMock()
    checker.is_update_available.side_effect = [
        RateLimitError("slow down", action="actions/checkout"),
        RateLimitError("slow down", action="actions/checkout"),
        UpdateCheck(True, "v4", NEW_SHA, OLD_SHA),
    ]

    summary = run_pipeline(
        _config(rate_limit_attempts=3, rate_limit_backoff=0), ctx, checker, UpdateManager(), repo_root=temp_dir
    )

    assert checker.is_update_available.call_count == 3
    assert len(summary.updates) == 1
    assert summary.errors == []


def test_rate_limit_retries_are_bounded(ctx, temp_dir, caplog):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    checker = MagicMock()
    checker.is_update_available.side_effect = RateLimitError("slow down", action="actions/checkout")

    with caplog.at_level(logging.WARNING):
        summary = run_pipeline(
            _config(rate_limit_attempts=2, rate_limit_backoff=0), ctx, checker, UpdateManager(), repo_root=temp_dir
        )

    assert checker.is_update_available.call_count == 2
    assert summary.updates == []
    assert len(summary.errors) == 1
    assert "Rate limited while checking actions/checkout@v2 (attempt 1/2)" in caplog.text


def test_other_resolution_errors_are_not_retried(ctx, temp_dir):
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    checker = MagicMock()
    checker.is_update_available.side_effect = NotFoundError("gone", action="actions/checkout")

    summary = run_pipeline(_config(rate_limit_backoff=0), ctx, checker, UpdateManager(), repo_root=temp_dir)

    assert checker.is_update_available.call_count == 1
    assert len(summary.errors) == 1


def test_no_rate_limit_retry_after_deadline(temp_dir):
    """Retries stop once the run deadline has passed."""
    _write_workflow(temp_dir, "ci.yml", "      - uses: actions/checkout@v2\n")
    checker = MagicMock()
    checker.is_update_available.side_effect = RateLimitError("slow down", action="actions/checkout")

    summary = run_pipeline(
        _config(rate_limit_attempts=5, rate_limit_backoff=10),
        RunContext(timeout=0),
        checker,
        UpdateManager(),
        repo_root=temp_dir,
    )

    assert checker.is_update_available.call_count == 1
    assert len(summary.errors) == 1
