"""Command-line interface for gatewaysync.

Commands:
- run: Start the sync agent (configured from GATEWAYSYNC_* variables)
- plan: Compile a profile against a checkout and preview the changes
- github-token: Exchange a GitHub App key for an installation token
"""

from __future__ import annotations

import dataclasses
import logging
import signal
import sys
import threading
from pathlib import Path

import click

from gatewaysync import __version__

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Send gatewaysync logs to stdout.

    Args:
        level: Logging level name.
    """
    root_logger = logging.getLogger("gatewaysync")
    root_logger.setLevel(level.upper())

    # Avoid duplicate handlers when invoked repeatedly (tests)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stdout_handler)


def _parse_vars(values: tuple[str, ...]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint="--var")
        parsed[key] = val
    return parsed


@click.group()
@click.version_option(__version__)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level.",
)
def cli(log_level: str) -> None:
    """gatewaysync - GitOps sync agent for SCADA gateways."""
    setup_logging(log_level)


@cli.command()
def run() -> None:
    """Run the sync agent until SIGTERM or SIGINT."""
    from gatewaysync.agent import Agent, AgentError
    from gatewaysync.core.config import AgentConfig

    try:
        config = AgentConfig.from_env()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    stop = threading.Event()

    def handle_signal(signum: int, frame: object) -> None:
        logging.getLogger(__name__).info(f"Received signal {signum}, stopping")
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    agent = Agent.from_config(config)
    try:
        agent.run(stop)
    except AgentError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Repository checkout.",
)
@click.option(
    "--live",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Live gateway data directory.",
)
@click.option(
    "--profile",
    "profile_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Profile JSON file (default: sync --source into the live directory).",
)
@click.option("--source", default=".", show_default=True, help="Source path for the default profile.")
@click.option("--gateway-name", default="gateway", show_default=True, help="Gateway name for templates.")
@click.option("--var", "variables", multiple=True, help="Extra template variable KEY=VALUE.")
def plan(
    repo: Path,
    live: Path,
    profile_file: Path | None,
    source: str,
    gateway_name: str,
    variables: tuple[str, ...],
) -> None:
    """Preview a sync without touching the live directory.

    Compiles the profile against REPO, stages it and prints what would be
    added, modified and deleted in LIVE.
    """
    from gatewaysync.sync import (
        SyncEngine,
        SyncError,
        TemplateContext,
        build_sync_plan,
        default_profile,
        load_profile,
    )

    extra_vars = _parse_vars(variables)

    try:
        if profile_file is not None:
            profile = load_profile(profile_file.read_text(encoding="utf-8"))
        else:
            profile = default_profile(source)
        profile = dataclasses.replace(
            profile, vars={**profile.vars, **extra_vars}, dry_run=True
        )
        context = TemplateContext(gateway_name=gateway_name, vars=profile.vars)
        sync_plan = build_sync_plan(profile, context, repo, live)
        result = SyncEngine().sync(sync_plan)
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Profile: {profile.name}")
    for mapping in sync_plan.mappings:
        flags = " (template)" if mapping.template else ""
        click.echo(f"  {mapping.type:4} {mapping.source} -> {mapping.destination}{flags}")
    click.echo(f"Files to add:    {result.files_added}")
    click.echo(f"Files to modify: {result.files_modified}")
    click.echo(f"Files to delete: {result.files_deleted}")
    if result.projects_synced:
        click.echo(f"Projects: {', '.join(result.projects_synced)}")


@cli.command("github-token")
@click.option("--app-id", type=int, required=True, help="GitHub App ID.")
@click.option("--installation-id", type=int, required=True, help="Installation ID.")
@click.option(
    "--key-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="GitHub App private key (PEM).",
)
@click.option("--api-url", default="", help="GitHub API base URL (default: api.github.com).")
@click.option("--show-token", is_flag=True, help="Print the token itself.")
def github_token(
    app_id: int,
    installation_id: int,
    key_file: Path,
    api_url: str,
    show_token: bool,
) -> None:
    """Exchange a GitHub App private key for an installation token."""
    from gatewaysync.git import AuthError, exchange_github_app_token

    try:
        result = exchange_github_app_token(
            key_file.read_bytes(), app_id, installation_id, api_url
        )
    except AuthError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Token expires at: {result.expires_at.isoformat()}")
    if show_token:
        click.echo(result.token)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
