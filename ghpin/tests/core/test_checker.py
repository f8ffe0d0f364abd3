"""
test_checker.py - Tests for remote version resolution
"""

from unittest.mock import MagicMock

import pytest
from github import GithubException, RateLimitExceededException
from requests.exceptions import Timeout

from ghpin.core import (
    CancelledError,
    DeadlineExceededError,
    NotFoundError,
    RateLimitError,
    ResolutionError,
    RunContext,
    VersionChecker,
)
from ghpin.core.scanner import ActionReference

V2_SHA = "2" * 40
V3_SHA = "3" * 40
V4_SHA = "deadbeef" * 5


def _tag(name, sha):
    tag = MagicMock()
    tag.name = name
    tag.commit.sha = sha
    return tag


def _git_ref(obj_type, sha):
    ref = MagicMock()
    ref.object.type = obj_type
    ref.object.sha = sha
    return ref


def _not_found():
    return GithubException(404, {"message": "Not Found"})


class LazyGitRef:
    """A GitRef that, like PyGithub's lazy objects, only requests the ref when its object is read"""

    def __init__(self, name, refs):
        self._name = name
        self._refs = refs

    @property
    def object(self):
        if self._name not in self._refs:
            raise _not_found()
        return self._refs[self._name].object


def _lazy_refs(refs):
    return lambda name: LazyGitRef(name, refs)


def _reference(version="v2", comment=""):
    token_len = len(f"actions/checkout@{version}")
    return ActionReference("actions", "checkout", version, comment, "ci.yml", 1, 14, 14 + token_len)


@pytest.fixture
def repo():
    repo = MagicMock()
    repo.get_tags.return_value = [
        _tag("v2", V2_SHA),
        _tag("v3", V3_SHA),
        _tag("v4", V4_SHA),
        _tag("v4.0.0", V4_SHA),
        _tag("nightly", "f" * 40),
    ]
    repo.get_git_ref.side_effect = _lazy_refs(
        {
            "tags/v2": _git_ref("commit", V2_SHA),
            "tags/v4": _git_ref("commit", V4_SHA),
        }
    )
    return repo


@pytest.fixture
def checker(repo):
    github = MagicMock()
    github.get_repo.return_value = repo
    return VersionChecker(github=github)


def test_get_latest_version(ctx, checker, repo):
    """Test that the highest semantic version tag is selected."""
    version, sha = checker.get_latest_version(ctx, _reference())

    assert version == "v4.0.0"
    assert sha == V4_SHA
    checker.github.get_repo.assert_called_with("actions/checkout")


def test_get_latest_version_sub_path_action(ctx, checker):
    """Sub-path actions resolve against their repository."""
    reference = ActionReference(
        "github", "codeql-action/init", "v3", "", "ci.yml", 1, 0, len("github/codeql-action/init@v3")
    )
    checker.get_latest_version(ctx, reference)
    checker.github.get_repo.assert_called_with("github/codeql-action")


def test_get_latest_version_without_semver_tags(ctx, checker, repo):
    repo.get_tags.return_value = [_tag("latest", V4_SHA)]

    with pytest.raises(NotFoundError):
        checker.get_latest_version(ctx, _reference())


def test_get_latest_version_excluding_prereleases(ctx, repo):
    repo.get_tags.return_value = [_tag("v4.0.0", V4_SHA), _tag("v5.0.0-beta.1", "5" * 40)]
    github = MagicMock()
    github.get_repo.return_value = repo

    assert VersionChecker(github=github).get_latest_version(ctx, _reference())[0] == "v5.0.0-beta.1"
    assert (
        VersionChecker(github=github, allow_prereleases=False).get_latest_version(ctx, _reference())[0]
        == "v4.0.0"
    )


def test_get_commit_hash_for_sha(ctx, checker, repo):
    """A literal commit id is returned without any API call."""
    assert checker.get_commit_hash(ctx, _reference(), V3_SHA) == V3_SHA
    repo.get_git_ref.assert_not_called()


def test_get_commit_hash_for_tag(ctx, checker):
    assert checker.get_commit_hash(ctx, _reference(), "v2") == V2_SHA


def test_get_commit_hash_for_branch(ctx, checker, repo):
    """Branches are tried after tags."""
    repo.get_git_ref.side_effect = _lazy_refs({"heads/main": _git_ref("commit", V3_SHA)})

    assert checker.get_commit_hash(ctx, _reference("main"), "main") == V3_SHA


def test_get_commit_hash_peels_annotated_tags(ctx, checker, repo):
    repo.get_git_ref.side_effect = None
    repo.get_git_ref.return_value = _git_ref("tag", "1" * 40)
    annotated = MagicMock()
    annotated.object.type = "commit"
    annotated.object.sha = V4_SHA
    repo.get_git_tag.return_value = annotated

    assert checker.get_commit_hash(ctx, _reference("v4"), "v4") == V4_SHA
    repo.get_git_tag.assert_called_once_with("1" * 40)


def test_get_commit_hash_not_found(ctx, checker):
    with pytest.raises(NotFoundError):
        checker.get_commit_hash(ctx, _reference("v9"), "v9")


def test_missing_tag_fails_only_that_reference(ctx, checker):
    """A tag that does not exist surfaces as NotFoundError once the deferred lookup runs."""
    with pytest.raises(NotFoundError) as exc_info:
        checker.is_update_available(ctx, _reference("nosuchtag"))
    assert exc_info.value.action == "actions/checkout"


def test_get_commit_hash_rejects_non_commit(ctx, checker, repo):
    repo.get_git_ref.side_effect = None
    repo.get_git_ref.return_value = _git_ref("tree", "1" * 40)

    with pytest.raises(ResolutionError):
        checker.get_commit_hash(ctx, _reference("v4"), "v4")


def test_is_update_available(ctx, checker):
    """The checkout@v2 pin has v4 available at a different commit."""
    check = checker.is_update_available(ctx, _reference("v2"))

    assert check.available
    assert check.latest_version == "v4.0.0"
    assert check.latest_hash == V4_SHA
    assert check.current_hash == V2_SHA


def test_is_update_available_compares_commits_not_tags(ctx, checker):
    """A pin on the v4 tag points at the latest commit even though the latest tag is v4.0.0."""
    check = checker.is_update_available(ctx, _reference("v4"))

    assert not check.available
    assert check.current_hash == check.latest_hash


def test_is_update_available_for_current_sha(ctx, checker):
    assert not checker.is_update_available(ctx, _reference(V4_SHA, "v4.0.0")).available


def test_is_update_available_does_not_downgrade(ctx, checker):
    """A pin labelled newer than the latest tag stays where it is."""
    reference = _reference("9" * 40, "v5.0.0-rc.1")
    check = checker.is_update_available(ctx, reference)

    assert not check.available
    assert check.current_hash == "9" * 40


def test_rate_limit(ctx, checker, repo):
    repo.get_tags.side_effect = RateLimitExceededException(403, {"message": "API rate limit exceeded"})

    with pytest.raises(RateLimitError):
        checker.get_latest_version(ctx, _reference())


def test_repository_not_found(ctx, checker, repo):
    repo.get_tags.side_effect = GithubException(404, {"message": "Not Found"})

    with pytest.raises(NotFoundError) as exc_info:
        checker.get_latest_version(ctx, _reference())
    assert exc_info.value.action == "actions/checkout"


def test_network_error(ctx, checker, repo):
    repo.get_tags.side_effect = Timeout("read timed out")

    with pytest.raises(ResolutionError):
        checker.get_latest_version(ctx, _reference())


def test_no_retries(ctx, checker, repo):
    """Failures are raised after a single attempt."""
    repo.get_tags.side_effect = GithubException(502, {"message": "Bad Gateway"})

    with pytest.raises(ResolutionError):
        checker.get_latest_version(ctx, _reference())
    assert repo.get_tags.call_count == 1


def test_cancelled_context(checker, repo):
    ctx = RunContext()
    ctx.cancel()

    with pytest.raises(CancelledError):
        checker.is_update_available(ctx, _reference())
    repo.get_tags.assert_not_called()


def test_expired_deadline(checker, repo):
    with pytest.raises(DeadlineExceededError):
        checker.get_latest_version(RunContext(timeout=0), _reference())
    repo.get_tags.assert_not_called()


def test_lazy_client():
    """The client is only built when first needed."""
    checker = VersionChecker(token="secret", timeout=5)
    assert checker._github is None


def test_repository_is_looked_up_once(ctx, checker):
    checker.is_update_available(ctx, _reference("v2"))
    checker.is_update_available(ctx, _reference("v4"))

    checker.github.get_repo.assert_called_once_with("actions/checkout")


def test_missing_repository(ctx, checker):
    checker.github.get_repo.side_effect = _not_found()

    with pytest.raises(NotFoundError):
        checker.is_update_available(ctx, _reference())


def test_unexpected_api_errors_are_mapped(ctx, checker):
    """GitHub errors raised outside the lookup handlers still become ResolutionError."""
    checker.get_latest_version = MagicMock(side_effect=GithubException(500, {"message": "Server Error"}))

    with pytest.raises(ResolutionError):
        checker.is_update_available(ctx, _reference())
