"""
publisher.py - Publishing updates as a GitHub pull request

The publisher never touches the local working tree. It reads each affected
file from the default branch, renders the updates with the same function the
local apply path uses, and builds blobs, a tree and a single commit through
the Git data API. The branch is then created, or fast-forwarded when a retry
reuses an existing branch, in one ref update, so the branch never points at a
partial change set.
"""

import datetime
import enum
import logging
import os
import secrets
from dataclasses import dataclass
from typing import List, Optional, Sequence

from github import Github, GithubException, InputGitTreeElement
from github.GitCommit import GitCommit
from github.GitRef import GitRef
from github.Repository import Repository
from requests.exceptions import RequestException

from ..utils.file_handler import to_repository_path
from ..utils.github import DEFAULT_TIMEOUT, get_github_client, is_already_exists, is_not_found
from .context import RunContext
from .errors import ApplyError, CancelledError, PublishError
from .updater import Update, render_updated_content, updates_by_file

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "action-updates"
DEFAULT_PR_TITLE = "Update GitHub Actions dependencies"
DEFAULT_LABELS = ("dependencies", "automated-pr")

FILE_MODE = "100644"


class PublishState(enum.Enum):
    """Progress of one publish transaction"""

    IDLE = "idle"
    BASE_RESOLVED = "base_resolved"
    BLOBS_CREATED = "blobs_created"
    TREE_CREATED = "tree_created"
    COMMIT_CREATED = "commit_created"
    REF_UPDATED = "ref_updated"
    REQUEST_OPENED = "request_opened"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishResult:
    """The pull request that carries a batch of updates"""

    number: int
    url: str
    branch: str
    commit_sha: str


class _Transaction:
    """Mutable state of a single create_pr call"""

    def __init__(self, branch: str) -> None:
        self.branch = branch
        self.state = PublishState.IDLE
        self.repo: Optional[Repository] = None
        self.base_branch = ""
        self.base_commit: Optional[GitCommit] = None
        self.existing_ref: Optional[GitRef] = None
        self.tree_sha = ""
        self.commit_sha = ""

    def advance(self, state: PublishState) -> None:
        logger.debug("Publish %s: %s -> %s", self.branch, self.state.value, state.value)
        self.state = state


def generate_branch_name(prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    """Return a branch name that is unique per run"""
    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{prefix}-{timestamp}-{secrets.token_hex(4)}"


def generate_commit_message(updates: Sequence[Update], title: str = DEFAULT_PR_TITLE) -> str:
    lines = [title, ""]
    for update in updates:
        lines.append(
            f"* {update.description} ({update.old_hash or 'unresolved'} -> {update.new_hash})"
        )
    return "\n".join(lines) + "\n"


def generate_pr_body(updates: Sequence[Update]) -> str:
    """
    Build the pull request description

    Args:
        updates: Updates contained in the pull request

    Returns:
        Markdown body listing each update with its commit ids
    """
    lines = ["This PR updates the following GitHub Actions to their latest versions:", ""]

    for update in updates:
        lines.append(f"* `{update.reference.full_name}`")
        lines.append(f"  * From: {update.old_version} ({update.old_hash or 'unresolved'})")
        lines.append(f"  * To: {update.new_version} ({update.new_hash})")
        if update.original_version and update.original_version != update.old_version:
            lines.append(f"  * Original version: {update.original_version}")
        lines.append("")

    lines.append("---")
    lines.append("Actions are pinned to full commit hashes; the trailing comment records the version history.")
    lines.append("This PR was created automatically by ghpin.")
    return "\n".join(lines)


class GitHubPublisher:
    """Publishes updates to a GitHub repository as a pull request"""

    def __init__(
        self,
        repository: str,
        github: Optional[Github] = None,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        workflows_path: str = ".github/workflows",
        repo_root: Optional[str] = None,
        labels: Sequence[str] = DEFAULT_LABELS,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        pr_title: str = DEFAULT_PR_TITLE,
    ) -> None:
        """
        Initialize the publisher

        Args:
            repository: Target repository as "owner/name"
            github: Optional PyGithub client, created lazily when omitted
            token: GitHub token used for the lazily created client
            api_url: API base URL
            timeout: Per-request timeout in seconds
            workflows_path: Workflows directory relative to the repository root
            repo_root: Local checkout root used to compute repository paths
            labels: Labels added to the pull request
            branch_prefix: Prefix of generated branch names
            pr_title: Pull request title and commit subject
        """
        if repository.count("/") != 1 or not all(repository.split("/")):
            raise ValueError(f"Repository must be 'owner/name', got {repository!r}")

        self.repository = repository
        self.owner = repository.split("/")[0]
        self._github = github
        self._token = token
        self._api_url = api_url
        self._timeout = timeout
        self.workflows_path = workflows_path
        self.repo_root = repo_root
        self.labels = list(labels)
        self.branch_prefix = branch_prefix
        self.pr_title = pr_title

    @property
    def github(self) -> Github:
        """Get the PyGithub client, initializing lazily if needed."""
        if self._github is None:
            self._github = get_github_client(self._token, self._api_url, self._timeout)
        return self._github

    def set_workflows_path(self, path: str) -> None:
        """Set the workflows directory used to map local files to repository paths"""
        self.workflows_path = path

    def repository_path(self, file_path: str) -> str:
        if self.repo_root and not os.path.isabs(file_path):
            file_path = os.path.abspath(file_path)
        return to_repository_path(file_path, self.repo_root, self.workflows_path)

    def create_pr(
        self, ctx: RunContext, updates: Sequence[Update], branch: Optional[str] = None
    ) -> Optional[PublishResult]:
        """
        Create a pull request containing all updates

        Passing the branch of an earlier, partially failed attempt makes the
        call idempotent: an identical commit is reused, otherwise the branch
        is fast-forwarded, and an already open pull request is returned.

        Args:
            ctx: Run context
            updates: Updates to publish
            branch: Work branch name; generated when omitted

        Returns:
            PublishResult, or None if there was nothing to change

        Raises:
            PublishError: If any step fails; its state names the step reached
        """
        if not updates:
            logger.info("No updates to publish")
            return None

        txn = _Transaction(branch or generate_branch_name(self.branch_prefix))

        try:
            self._resolve_base(ctx, txn)
            elements = self._create_blobs(ctx, txn, updates)
            if not elements:
                logger.info("Updates are already present on %s; nothing to publish", txn.base_branch)
                return None
            self._create_tree(ctx, txn, elements)
            self._create_commit(ctx, txn, updates)
            self._update_ref(ctx, txn)
            result = self._open_pull_request(ctx, txn, updates)
        except PublishError:
            txn.state = PublishState.FAILED
            raise
        except (GithubException, RequestException, ApplyError, CancelledError) as e:
            failed_at = txn.state
            txn.state = PublishState.FAILED
            raise PublishError(
                f"Publishing to {self.repository} failed after {failed_at.value}: {e}",
                state=failed_at.value,
            ) from e

        self._add_labels(ctx, txn, result.number)
        logger.info("Opened pull request #%d: %s", result.number, result.url)
        return result

    def _resolve_base(self, ctx: RunContext, txn: _Transaction) -> None:
        ctx.check("resolving base branch")
        repo = self.github.get_repo(self.repository)
        txn.repo = repo
        txn.base_branch = repo.default_branch

        ctx.check("resolving base commit")
        base_ref = repo.get_git_ref(f"heads/{txn.base_branch}")
        txn.base_commit = repo.get_git_commit(base_ref.object.sha)

        ctx.check("looking up work branch")
        try:
            existing_ref = repo.get_git_ref(f"heads/{txn.branch}")
            # Reading the head here surfaces a deferred 404 inside this handler
            logger.debug("Work branch %s exists at %s", txn.branch, existing_ref.object.sha)
            txn.existing_ref = existing_ref
        except GithubException as e:
            if not is_not_found(e):
                raise
            txn.existing_ref = None

        txn.advance(PublishState.BASE_RESOLVED)

    def _create_blobs(
        self, ctx: RunContext, txn: _Transaction, updates: Sequence[Update]
    ) -> List[InputGitTreeElement]:
        assert txn.repo is not None and txn.base_commit is not None

        elements: List[InputGitTreeElement] = []
        for file_path, file_updates in updates_by_file(updates).items():
            path = self.repository_path(file_path)

            ctx.check(f"reading {path}")
            contents = txn.repo.get_contents(path, ref=txn.base_commit.sha)
            if isinstance(contents, list):
                raise PublishError(f"{path} is a directory on {txn.base_branch}", state=txn.state.value)
            try:
                original = contents.decoded_content.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ApplyError(f"{path} on {txn.base_branch} is not valid UTF-8: {e}", file_path=path) from e

            updated = render_updated_content(original, file_updates)
            if updated == original:
                logger.debug("%s already up to date on %s", path, txn.base_branch)
                continue

            ctx.check(f"creating blob for {path}")
            blob = txn.repo.create_git_blob(updated, "utf-8")
            elements.append(InputGitTreeElement(path, FILE_MODE, "blob", sha=blob.sha))

        txn.advance(PublishState.BLOBS_CREATED)
        return elements

    def _create_tree(
        self, ctx: RunContext, txn: _Transaction, elements: List[InputGitTreeElement]
    ) -> None:
        assert txn.repo is not None and txn.base_commit is not None

        ctx.check("creating tree")
        base_tree = txn.repo.get_git_tree(txn.base_commit.tree.sha)
        tree = txn.repo.create_git_tree(elements, base_tree)
        txn.tree_sha = tree.sha
        txn.advance(PublishState.TREE_CREATED)

    def _create_commit(self, ctx: RunContext, txn: _Transaction, updates: Sequence[Update]) -> None:
        assert txn.repo is not None and txn.base_commit is not None

        parent = txn.base_commit
        if txn.existing_ref is not None:
            ctx.check("reading work branch head")
            parent = txn.repo.get_git_commit(txn.existing_ref.object.sha)
            if parent.tree.sha == txn.tree_sha:
                logger.info("Branch %s already holds these changes", txn.branch)
                txn.commit_sha = parent.sha
                txn.advance(PublishState.COMMIT_CREATED)
                return

        ctx.check("creating commit")
        tree = txn.repo.get_git_tree(txn.tree_sha)
        commit = txn.repo.create_git_commit(
            generate_commit_message(updates, self.pr_title), tree, [parent]
        )
        txn.commit_sha = commit.sha
        txn.advance(PublishState.COMMIT_CREATED)

    def _update_ref(self, ctx: RunContext, txn: _Transaction) -> None:
        assert txn.repo is not None

        ctx.check(f"updating branch {txn.branch}")
        if txn.existing_ref is None:
            txn.repo.create_git_ref(f"refs/heads/{txn.branch}", txn.commit_sha)
        elif txn.existing_ref.object.sha != txn.commit_sha:
            txn.existing_ref.edit(txn.commit_sha, force=False)

        txn.advance(PublishState.REF_UPDATED)

    def _open_pull_request(
        self, ctx: RunContext, txn: _Transaction, updates: Sequence[Update]
    ) -> PublishResult:
        assert txn.repo is not None

        ctx.check("opening pull request")
        try:
            pr = txn.repo.create_pull(
                title=self.pr_title,
                body=generate_pr_body(updates),
                head=txn.branch,
                base=txn.base_branch,
            )
        except GithubException as e:
            if not is_already_exists(e):
                raise
            pr = self._find_open_pull_request(ctx, txn)
            if pr is None:
                raise
            logger.info("Reusing open pull request #%d for %s", pr.number, txn.branch)

        txn.advance(PublishState.REQUEST_OPENED)
        return PublishResult(
            number=pr.number, url=pr.html_url, branch=txn.branch, commit_sha=txn.commit_sha
        )

    def _find_open_pull_request(self, ctx: RunContext, txn: _Transaction):
        assert txn.repo is not None

        ctx.check("looking up open pull request")
        for pr in txn.repo.get_pulls(state="open", head=f"{self.owner}:{txn.branch}"):
            return pr
        return None

    def _add_labels(self, ctx: RunContext, txn: _Transaction, number: int) -> None:
        if not self.labels:
            return
        assert txn.repo is not None

        try:
            ctx.check("adding labels")
            txn.repo.get_issue(number).add_to_labels(*self.labels)
        except (GithubException, RequestException, CancelledError) as e:
            logger.warning("Could not add labels to pull request #%d: %s", number, e)

