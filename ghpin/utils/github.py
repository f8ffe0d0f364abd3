"""
github.py - GitHub client construction and error mapping

Builds PyGithub clients for the version checker and the pull request
publisher. A missing token degrades to unauthenticated access instead of
failing, and client-side retries are disabled: pacing and retry policy belong
to the caller.
"""

import logging
from typing import Optional

from github import Auth, Github, GithubException, RateLimitExceededException

from ..core.errors import NotFoundError, RateLimitError, ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30


def get_github_client(
    token: Optional[str] = None,
    api_url: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> Github:
    """
    Create a PyGithub client

    Args:
        token: GitHub token, or None for unauthenticated access
        api_url: API base URL (for GitHub Enterprise Server)
        timeout: Per-request timeout in seconds

    Returns:
        Github instance with retries disabled
    """
    auth = Auth.Token(token) if token else None
    if auth is None:
        logger.warning(
            "No GitHub token provided; using unauthenticated access with lower rate limits"
        )

    return Github(
        auth=auth,
        base_url=api_url or DEFAULT_API_URL,
        timeout=timeout,
        retry=None,
    )


def is_not_found(error: GithubException) -> bool:
    return error.status == 404


def is_already_exists(error: GithubException) -> bool:
    """Check for GitHub's 422 'already exists' validation failures"""
    if error.status != 422:
        return False
    return "already exists" in str(error.data).lower()


def to_resolution_error(error: Exception, action: str, what: str) -> ResolutionError:
    """
    Map a PyGithub or transport error to a ResolutionError

    Args:
        error: The exception raised by the client
        action: The action the lookup was for ("owner/repo")
        what: Short description of the lookup

    Returns:
        NotFoundError, RateLimitError or ResolutionError
    """
    if isinstance(error, RateLimitExceededException):
        return RateLimitError(f"Rate limit exceeded while {what} for {action}", action=action)
    if isinstance(error, GithubException):
        if is_not_found(error):
            return NotFoundError(f"Not found while {what} for {action}", action=action)
        if error.status in (403, 429) and "rate limit" in str(error.data).lower():
            return RateLimitError(f"Rate limit exceeded while {what} for {action}", action=action)
        return ResolutionError(
            f"GitHub API error {error.status} while {what} for {action}: {error.data}",
            action=action,
        )
    return ResolutionError(f"Network error while {what} for {action}: {error}", action=action)
