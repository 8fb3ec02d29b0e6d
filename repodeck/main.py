"""CLI entry point for repodeck."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated

import typer

from repodeck.app import build_coordinator
from repodeck.core.config import RepoDeckConfig
from repodeck.core.coordinator import RepositoryCoordinator
from repodeck.exceptions import ConfigError, RepoDeckError
from repodeck.git.formatter import format_branches, format_operation, format_state
from repodeck.git.models import OperationResult


app = typer.Typer(
    help="Inspect and update many git working trees at once.",
    no_args_is_help=True,
)

RepoPath = Annotated[
    Path,
    typer.Argument(exists=True, file_okay=False, resolve_path=True, help="Working tree"),
]


def _load(paths: list[Path] | None) -> RepositoryCoordinator:
    try:
        config = RepoDeckConfig()
        return build_coordinator(config, repositories=paths)
    except (ValueError, ConfigError) as e:
        typer.echo(f"Configuration error: {e}", err=True)
        typer.echo(
            "Pass repository paths or set REPODECK_REPOSITORIES / a .env file.",
            err=True,
        )
        raise typer.Exit(code=1) from e


def _only_repository_id(coordinator: RepositoryCoordinator) -> str:
    return coordinator.states()[0].repository.id


def _run_operation(
    path: Path,
    operation: Callable[[RepositoryCoordinator, str], Awaitable[OperationResult]],
) -> None:
    coordinator = _load([path])
    try:
        result = asyncio.run(operation(coordinator, _only_repository_id(coordinator)))
    except RepoDeckError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(format_operation(result))
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def status(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(
            exists=True,
            file_okay=False,
            resolve_path=True,
            help="Working trees to inspect (defaults to REPODECK_REPOSITORIES)",
        ),
    ] = None,
) -> None:
    """Refresh every repository concurrently and print its status."""
    coordinator = _load(paths or None)
    if not coordinator.states():
        typer.echo("No repositories to inspect.", err=True)
        raise typer.Exit(code=1)

    outcomes = asyncio.run(coordinator.refresh_all())
    for state in coordinator.states():
        typer.echo(format_state(state))
        typer.echo("")

    if any(not outcome.succeeded for outcome in outcomes):
        raise typer.Exit(code=1)


@app.command()
def pull(path: RepoPath) -> None:
    """Pull the tracked upstream and summarize what changed."""
    _run_operation(path, lambda c, rid: c.pull(rid))


@app.command()
def push(path: RepoPath) -> None:
    """Push the current branch."""
    _run_operation(path, lambda c, rid: c.push(rid))


@app.command()
def fetch(path: RepoPath) -> None:
    """Fetch all remotes."""
    _run_operation(path, lambda c, rid: c.fetch(rid))


@app.command()
def branches(path: RepoPath) -> None:
    """List local and remote-tracking branches."""
    coordinator = _load([path])
    try:
        found = asyncio.run(coordinator.load_branches(_only_repository_id(coordinator)))
    except RepoDeckError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(format_branches(found))


def run() -> None:
    app()
