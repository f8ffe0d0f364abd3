"""
checker.py - Remote version resolution for action references

The checker lists an action repository's tags, picks the highest semantic
version and decides whether the pinned reference should move to it. The
decision compares commit ids, never tag names: two tags pointing at the same
commit are the same version for update purposes.

The checker performs no retries. Not-found, rate-limit and network failures
are raised to the caller as ResolutionError subclasses, including failures
that PyGithub defers until an attribute of a returned object is first read.
"""

import logging
import threading
from typing import Dict, NamedTuple, Optional, Tuple

from github import Github, GithubException
from github.Repository import Repository
from requests.exceptions import RequestException

from ..utils.github import DEFAULT_TIMEOUT, get_github_client, is_not_found, to_resolution_error
from ..utils.version import is_commit_sha, is_version_newer, select_latest_version, try_parse_version
from .context import RunContext
from .errors import NotFoundError, ResolutionError
from .scanner import ActionReference

logger = logging.getLogger(__name__)

# Annotated tags may point at other tag objects; follow a bounded chain
MAX_TAG_DEPTH = 5


class UpdateCheck(NamedTuple):
    """Outcome of an update availability check"""

    available: bool
    latest_version: str
    latest_hash: str
    current_hash: str


class VersionChecker:
    """Resolves action versions through the GitHub API"""

    def __init__(
        self,
        github: Optional[Github] = None,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        allow_prereleases: bool = True,
    ) -> None:
        """
        Initialize the checker

        Args:
            github: Optional PyGithub client. If not provided, one is created
                lazily from token and api_url.
            token: GitHub token; None means unauthenticated access
            api_url: API base URL
            timeout: Per-request timeout in seconds
            allow_prereleases: Whether pre-release tags can be the latest version
        """
        self._github = github
        self._token = token
        self._api_url = api_url
        self._timeout = timeout
        self.allow_prereleases = allow_prereleases
        self._repos: Dict[str, Repository] = {}
        self._repos_lock = threading.Lock()

    @property
    def github(self) -> Github:
        """Get the PyGithub client, initializing lazily if needed."""
        if self._github is None:
            self._github = get_github_client(self._token, self._api_url, self._timeout)
        return self._github

    def _get_repo(self, ctx: RunContext, reference: ActionReference) -> Repository:
        """Fetch the action's repository once per checker"""
        action = reference.repository
        with self._repos_lock:
            repo = self._repos.get(action)
        if repo is not None:
            return repo

        ctx.check(f"looking up {action}")
        try:
            repo = self.github.get_repo(action)
        except (GithubException, RequestException) as e:
            raise to_resolution_error(e, action, "looking up the repository") from e

        with self._repos_lock:
            self._repos.setdefault(action, repo)
        return repo

    def list_tags(self, ctx: RunContext, reference: ActionReference) -> Dict[str, str]:
        """
        List the published tags of an action's repository

        Args:
            ctx: Run context
            reference: Action reference

        Returns:
            Mapping of tag name to the commit id it points at

        Raises:
            ResolutionError: If the listing fails
        """
        repo = self._get_repo(ctx, reference)
        ctx.check(f"listing tags for {reference.repository}")

        tags: Dict[str, str] = {}
        try:
            for tag in repo.get_tags():
                tags[tag.name] = tag.commit.sha
        except (GithubException, RequestException) as e:
            raise to_resolution_error(e, reference.repository, "listing tags") from e

        logger.debug("Found %d tag(s) for %s", len(tags), reference.repository)
        return tags

    def get_latest_version(self, ctx: RunContext, reference: ActionReference) -> Tuple[str, str]:
        """
        Get the latest version of an action and its commit id

        Args:
            ctx: Run context
            reference: Action reference

        Returns:
            Tuple of (version, commit_sha)

        Raises:
            NotFoundError: If the repository has no semantic version tags
            ResolutionError: If a lookup fails
        """
        tags = self.list_tags(ctx, reference)

        latest = select_latest_version(tags, allow_prereleases=self.allow_prereleases)
        if latest is None:
            raise NotFoundError(
                f"No semantic version tags published for {reference.repository}",
                action=reference.repository,
            )

        logger.debug("Latest version of %s is %s (%s)", reference.repository, latest, tags[latest])
        return latest, tags[latest]

    def get_commit_hash(self, ctx: RunContext, reference: ActionReference, version: str) -> str:
        """
        Resolve a version string to a commit id

        Tags are tried first (annotated tags are peeled to their commit), then
        branches. A full commit id is returned unchanged.

        Args:
            ctx: Run context
            reference: Action reference naming the repository
            version: Tag, branch or commit id

        Returns:
            40 character commit id

        Raises:
            NotFoundError: If no tag or branch has that name
            ResolutionError: If a lookup fails
        """
        if is_commit_sha(version):
            return version

        repo = self._get_repo(ctx, reference)
        action = reference.repository

        target: Optional[Tuple[str, str]] = None
        for prefix in ("tags", "heads"):
            ctx.check(f"resolving {action}@{version}")
            try:
                git_ref = repo.get_git_ref(f"{prefix}/{version}")
                # A lazily loaded ref only hits the API when its object is read
                target = (git_ref.object.type, git_ref.object.sha)
                break
            except GithubException as e:
                if is_not_found(e):
                    continue
                raise to_resolution_error(e, action, f"resolving {version}") from e
            except RequestException as e:
                raise to_resolution_error(e, action, f"resolving {version}") from e

        if target is None:
            raise NotFoundError(f"No tag or branch named {version} in {action}", action=action)

        obj_type, sha = target
        depth = 0
        while obj_type == "tag":
            depth += 1
            if depth > MAX_TAG_DEPTH:
                raise ResolutionError(f"Tag chain too deep for {action}@{version}", action=action)

            ctx.check(f"peeling annotated tag {action}@{version}")
            try:
                tag = repo.get_git_tag(sha)
                obj_type, sha = tag.object.type, tag.object.sha
            except (GithubException, RequestException) as e:
                raise to_resolution_error(e, action, f"reading annotated tag {version}") from e

        if obj_type != "commit":
            raise ResolutionError(
                f"{action}@{version} points at a {obj_type}, not a commit", action=action
            )

        return sha

    def is_update_available(self, ctx: RunContext, reference: ActionReference) -> UpdateCheck:
        """
        Check if a newer version is available

        Args:
            ctx: Run context
            reference: Action reference as currently pinned

        Returns:
            UpdateCheck with the latest version and both commit ids

        Raises:
            ResolutionError: If a lookup fails
        """
        try:
            latest_version, latest_hash = self.get_latest_version(ctx, reference)
            current_hash = self.get_commit_hash(ctx, reference, reference.version)
        except (GithubException, RequestException) as e:
            raise to_resolution_error(e, reference.repository, f"checking {reference.token}") from e

        available = current_hash != latest_hash
        if available:
            # Never move a pin backwards, e.g. from a pre-release newer than the latest tag
            label = reference.label or ""
            if try_parse_version(label) is not None and is_version_newer(label, latest_version):
                logger.debug(
                    "%s is pinned to %s, newer than %s; not downgrading",
                    reference.full_name,
                    reference.label,
                    latest_version,
                )
                available = False

        return UpdateCheck(available, latest_version, latest_hash, current_hash)
