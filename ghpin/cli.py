"""
cli.py - Command-line interface for ghpin

This module provides the command-line interface for the ghpin tool,
allowing users to preview, apply or publish action pin updates.
"""

import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import click

from .core import (
    ConfigurationError,
    DiscoveryError,
    GhpinError,
    GitHubPublisher,
    RunContext,
    UpdateManager,
    VersionChecker,
    WorkflowScanner,
    format_summary,
    generate_default_config,
    load_config,
    run_pipeline,
    summary_to_dict,
)
from .core.config import apply_overrides
from .utils.file_handler import find_repository_root
from .utils.version import __version__

OUTPUT_FORMATS = ["text", "json"]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_effective_config(config: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Load the config file and apply command-line overrides, exiting on errors"""
    try:
        return apply_overrides(load_config(config), overrides)
    except ConfigurationError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """ghpin - GitHub Actions pin updater

    Pins the actions used in GitHub Actions workflows to the commit of their
    latest release and records the version history in a trailing comment.
    """
    _setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("repo_path", type=click.Path(), default=".")
@click.option("--owner", help="Owner of the repository to open the pull request in")
@click.option("--repo-name", help="Name of the repository to open the pull request in")
@click.option("--token", envvar="GITHUB_TOKEN", help="GitHub token [env: GITHUB_TOKEN]")
@click.option(
    "--workflows-path",
    envvar="WORKFLOWS_PATH",
    help="Workflows directory relative to the repository root [env: WORKFLOWS_PATH]",
)
@click.option("--dry-run", is_flag=True, help="Show available updates without changing anything")
@click.option("--stage", is_flag=True, help="Apply updates to the local files instead of opening a PR")
@click.option("--branch", help="Work branch for the pull request (reuse it to retry a failed run)")
@click.option("--workers", type=int, help="Maximum number of concurrent version checks")
@click.option("--timeout", type=int, help="Seconds allowed for each GitHub API request")
@click.option("--run-timeout", type=float, help="Seconds allowed for the whole run (default: no limit)")
@click.option("--config", type=click.Path(), help="Path to YAML config file")
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS),
    default="text",
    help="Output format for results",
)
def update(
    repo_path: str,
    owner: Optional[str],
    repo_name: Optional[str],
    token: Optional[str],
    workflows_path: Optional[str],
    dry_run: bool,
    stage: bool,
    branch: Optional[str],
    workers: Optional[int],
    timeout: Optional[int],
    run_timeout: Optional[float],
    config: Optional[str],
    output: str,
) -> None:
    """Pin workflow actions to the commit of their latest version

    REPO_PATH: Path to the repository root (default: current directory)
    """
    if dry_run and stage:
        click.echo("Error: --dry-run and --stage are mutually exclusive", err=True)
        sys.exit(1)

    mode = "preview" if dry_run else "stage" if stage else "publish"

    if mode == "publish" and not (owner and repo_name):
        click.echo("Error: --owner and --repo-name are required to open a pull request", err=True)
        sys.exit(1)

    config_data = _load_effective_config(
        config,
        {
            "workflows_path": workflows_path,
            "max_workers": workers,
            "timeout": timeout,
            "run_timeout": run_timeout,
        },
    )

    repo_root = os.path.abspath(repo_path)
    if not os.path.isdir(repo_root):
        click.echo(f"Error: repository path not found: {repo_path}", err=True)
        sys.exit(1)

    ctx = RunContext(timeout=config_data["run_timeout"])
    checker = VersionChecker(
        token=token,
        api_url=config_data["api_url"],
        timeout=config_data["timeout"],
        allow_prereleases=config_data["allow_prereleases"],
    )
    manager = UpdateManager(
        base_dir=repo_root,
        history_limit=config_data["history_limit"],
        create_backup=config_data["backup"],
    )
    scanner = WorkflowScanner(repository=f"{owner}/{repo_name}" if owner and repo_name else None)

    publisher = None
    if mode == "publish":
        publisher = GitHubPublisher(
            f"{owner}/{repo_name}",
            token=token,
            api_url=config_data["api_url"],
            timeout=config_data["timeout"],
            workflows_path=config_data["workflows_path"],
            repo_root=find_repository_root(repo_root) or repo_root,
            labels=config_data["labels"],
            branch_prefix=config_data["branch_prefix"],
            pr_title=config_data["pr_title"],
        )

    if mode == "preview" and output == "text":
        click.echo("Running in dry-run mode. No changes will be made.")

    try:
        summary = run_pipeline(
            config_data,
            ctx,
            checker,
            manager,
            publisher=publisher,
            scanner=scanner,
            mode=mode,
            repo_root=repo_root,
            branch=branch,
        )
    except DiscoveryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except GhpinError as e:
        click.echo(f"Update failed: {e}", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(summary_to_dict(summary), indent=2))
    else:
        click.echo(format_summary(summary))


@cli.command()
@click.argument("repo_path", type=click.Path(), default=".")
@click.option(
    "--workflows-path",
    envvar="WORKFLOWS_PATH",
    help="Workflows directory relative to the repository root [env: WORKFLOWS_PATH]",
)
@click.option("--config", type=click.Path(), help="Path to YAML config file")
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS),
    default="text",
    help="Output format for results",
)
def scan(repo_path: str, workflows_path: Optional[str], config: Optional[str], output: str) -> None:
    """List pinned action references without contacting GitHub

    REPO_PATH: Path to the repository root (default: current directory)
    """
    config_data = _load_effective_config(config, {"workflows_path": workflows_path})
    root = os.path.join(repo_path, config_data["workflows_path"])

    scanner = WorkflowScanner()
    try:
        files = scanner.scan_workflows(root)
    except DiscoveryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    references = []
    for file_path in files:
        try:
            references.extend(scanner.parse_action_references(file_path))
        except GhpinError as e:
            click.echo(f"Skipping {file_path}: {e}", err=True)

    if output == "json":
        click.echo(
            json.dumps(
                [
                    {
                        "file": ref.file_path,
                        "line": ref.line,
                        "column": ref.column,
                        "action": ref.full_name,
                        "version": ref.version,
                        "label": ref.label,
                        "pinned": ref.is_sha_pinned,
                        "history": list(ref.history),
                    }
                    for ref in references
                ],
                indent=2,
            )
        )
        return

    if not references:
        click.echo(f"No action references found in {root}")
        return

    for ref in references:
        label = f" ({ref.label})" if ref.is_sha_pinned and ref.label else ""
        click.echo(f"{ref.file_path}:{ref.line}:{ref.column + 1}: {ref.full_name}@{ref.version}{label}")
    click.echo(f"\nFound {len(references)} reference(s) in {len(files)} file(s)")


@cli.command()
@click.option("--config", type=click.Path(), help="Path to YAML config file to validate")
@click.option("--default", "show_default", is_flag=True, help="Print the default config")
@click.option("--output", type=click.Path(), help="Write the default config to this path")
def config(config: Optional[str], show_default: bool, output: Optional[str]) -> None:
    """View or validate current config"""
    if show_default or output:
        try:
            config_str = generate_default_config(output_path=output)
        except ConfigurationError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        if output:
            click.echo(f"Default config written to {output}")
        else:
            click.echo(config_str)
        return

    try:
        config_data = load_config(config)
    except ConfigurationError as e:
        click.echo(f"Config validation failed: {e}", err=True)
        sys.exit(1)

    click.echo("Config loaded and valid.")
    for key, value in config_data.items():
        click.echo(f" - {key}: {value}")


if __name__ == "__main__":
    cli()
