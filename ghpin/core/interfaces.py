"""Capability protocols for the remote-facing pipeline stages."""

from typing import TYPE_CHECKING, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from .checker import UpdateCheck
    from .context import RunContext
    from .publisher import PublishResult
    from .scanner import ActionReference
    from .updater import Update


class VersionResolver(Protocol):
    """Resolves published versions of an action to commit ids."""

    def get_latest_version(
        self, ctx: "RunContext", reference: "ActionReference"
    ) -> Tuple[str, str]:
        """Return the latest version label and its commit id."""
        ...

    def is_update_available(
        self, ctx: "RunContext", reference: "ActionReference"
    ) -> "UpdateCheck":
        """Decide whether the pinned commit differs from the latest one."""
        ...

    def get_commit_hash(
        self, ctx: "RunContext", reference: "ActionReference", version: str
    ) -> str:
        """Resolve an arbitrary version string to a commit id."""
        ...


class ChangeRequestPublisher(Protocol):
    """Publishes a batch of updates as a pull request."""

    def set_workflows_path(self, path: str) -> None:
        """Align remote paths with the local workflows root."""
        ...

    def create_pr(
        self,
        ctx: "RunContext",
        updates: List["Update"],
        branch: Optional[str] = None,
    ) -> Optional["PublishResult"]:
        """Create a pull request containing the updates."""
        ...
