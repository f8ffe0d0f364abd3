"""
core package for ghpin

This package contains scanning, version checking, rewriting and publishing.
"""

from .errors import (
    GhpinError,
    ConfigurationError,
    DiscoveryError,
    ParseError,
    ResolutionError,
    NotFoundError,
    RateLimitError,
    ApplyError,
    SpanMismatchError,
    PublishError,
    CancelledError,
    DeadlineExceededError,
)
from .context import RunContext
from .scanner import ActionReference, WorkflowScanner, scan_workflows, parse_action_references
from .checker import UpdateCheck, VersionChecker
from .updater import Update, ApplyReport, UpdateManager, render_updated_content
from .publisher import GitHubPublisher, PublishResult, PublishState
from .pipeline import RunSummary, run_pipeline, summary_to_dict, format_summary
from .config import load_config, generate_default_config, save_config

__all__ = [
    "GhpinError",
    "ConfigurationError",
    "DiscoveryError",
    "ParseError",
    "ResolutionError",
    "NotFoundError",
    "RateLimitError",
    "ApplyError",
    "SpanMismatchError",
    "PublishError",
    "CancelledError",
    "DeadlineExceededError",
    "RunContext",
    "ActionReference",
    "WorkflowScanner",
    "scan_workflows",
    "parse_action_references",
    "UpdateCheck",
    "VersionChecker",
    "Update",
    "ApplyReport",
    "UpdateManager",
    "render_updated_content",
    "GitHubPublisher",
    "PublishResult",
    "PublishState",
    "RunSummary",
    "run_pipeline",
    "summary_to_dict",
    "format_summary",
    "load_config",
    "generate_default_config",
    "save_config",
]
