"""
ghpin - GitHub Actions pin updater

Scans GitHub Actions workflows for pinned action references, resolves the
latest published version of each action and pins it to a full commit hash,
recording the version history in a trailing comment. Changes can be
previewed, applied to the working tree or published as a pull request.
"""

from ghpin.utils.version import __version__, get_version, get_version_info

from .core import (
    ActionReference,
    ConfigurationError,
    GhpinError,
    GitHubPublisher,
    RunContext,
    Update,
    UpdateManager,
    VersionChecker,
    WorkflowScanner,
    generate_default_config,
    load_config,
    render_updated_content,
    run_pipeline,
    save_config,
)

__all__ = [
    "__version__",
    "get_version",
    "get_version_info",
    "ActionReference",
    "ConfigurationError",
    "GhpinError",
    "GitHubPublisher",
    "RunContext",
    "Update",
    "UpdateManager",
    "VersionChecker",
    "WorkflowScanner",
    "generate_default_config",
    "load_config",
    "render_updated_content",
    "run_pipeline",
    "save_config",
]


def main() -> int | None:
    """Main entry point for the ghpin CLI tool"""
    from typing import Optional, cast

    from .cli import cli

    return cast(Optional[int], cli())
