"""
errors.py - Exception hierarchy for ghpin

Per-item errors (ParseError, ResolutionError, ApplyError) are logged and the
run continues; whole-batch errors (DiscoveryError, PublishError and an
ApplyError in stage mode) abort the run.
"""

from typing import Optional


class GhpinError(Exception):
    """Base class for all ghpin errors"""

    pass


class ConfigurationError(GhpinError):
    """Exception raised for configuration errors"""

    pass


class DiscoveryError(GhpinError):
    """The workflows root exists but cannot be read"""

    pass


class ParseError(GhpinError):
    """A single workflow file could not be read or decoded"""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.file_path = file_path


class ResolutionError(GhpinError):
    """A remote lookup for one action reference failed"""

    def __init__(self, message: str, action: Optional[str] = None) -> None:
        super().__init__(message)
        self.action = action


class NotFoundError(ResolutionError):
    """The repository, tag or ref does not exist"""

    pass


class RateLimitError(ResolutionError):
    """The GitHub API rate limit was exhausted"""

    pass


class ApplyError(GhpinError):
    """A local edit could not be made"""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.file_path = file_path


class SpanMismatchError(ApplyError):
    """The recorded token span no longer holds the expected reference"""

    pass


class PublishError(GhpinError):
    """A step of the pull request transaction failed"""

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(message)
        self.state = state


class CancelledError(GhpinError):
    """The run context was cancelled before the operation started"""

    pass


class DeadlineExceededError(CancelledError):
    """The run context deadline passed before the operation started"""

    pass
