"""
Command line interface for the GitLab package registry feed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .errors import CacheSafetyError, ConfigurationError, RepofeedError
from .gitlab import GitLabAPIError, GitLabClient
from .logger import configure_logging, get_logger, level_from_name, redirect_logging_to_file
from .registry import AggregationEngine, RefDescriptorBuilder, RepositoryCache, resolve_version
from .settings import AppSettings, load_settings

app = typer.Typer(name="repofeed", help="GitLab to Composer package registry feed.")
log = get_logger(__name__)
console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Configuration file (defaults to $REPOFEED_CONFIG_PATH or ./repofeed.toml).",
)


def _load(config: Optional[Path]) -> AppSettings:
    try:
        settings = load_settings(config)
    except ConfigurationError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=2) from exc
    configure_logging(
        level=level_from_name(settings.log_level),
        json_output=settings.log_format == "json",
    )
    return settings


def _client(settings: AppSettings) -> GitLabClient:
    return GitLabClient(
        endpoint=settings.gitlab_endpoint,
        token=settings.gitlab_api_key,
        per_page=settings.gitlab_per_page,
        timeout=settings.gitlab_timeout,
    )


@app.command()
def build(
    config: Optional[Path] = ConfigOption,
    force: bool = typer.Option(False, "--force", "-f", help="Rebuild even when up to date."),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Append detailed logs to this file instead of stderr."
    ),
) -> None:
    """Refresh the registry index (only when stale unless --force)."""
    settings = _load(config)
    if log_file:
        redirect_logging_to_file(log_file.resolve(), level=level_from_name(settings.log_level))
        typer.echo(f"Logging detailed output to {log_file.resolve()}")

    try:
        result = AggregationEngine(settings).run(force=force)
    except ConfigurationError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except (RepofeedError, GitLabAPIError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if result.cache_cleared:
        typer.echo("Configuration changed: repository cache cleared.")
    if not result.rebuilt:
        typer.echo(f"Index up to date ({result.repository_count} repositories): {result.index_path}")
        return
    typer.echo(
        f"Rebuilt {result.index_path} packages={result.package_count} "
        f"repositories={result.repository_count} skipped={len(result.skipped)}"
    )
    for path in result.skipped:
        typer.echo(f"  skipped {path}")


@app.command()
def serve() -> None:
    """Run the HTTP server (uses $REPOFEED_CONFIG_PATH or ./repofeed.toml)."""
    from .api.main import run

    run()


@app.command("clear-cache")
def clear_cache(
    config: Optional[Path] = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not prompt for confirmation."),
) -> None:
    """Delete every cached repository record and the built index."""
    settings = _load(config)
    if not yes:
        proceed = typer.confirm(f"Erase everything under {settings.cache_dir}?", default=False)
        if not proceed:
            typer.echo("Aborted.")
            raise typer.Exit()
    try:
        removed = RepositoryCache(settings.cache_dir).clear_all()
    except CacheSafetyError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Removed {removed} entries from {settings.cache_dir}")


@app.command()
def inspect(
    project: str = typer.Argument(..., help="Project id or path with namespace."),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show how each ref of a project would be published."""
    settings = _load(config)
    client = _client(settings)
    try:
        repository = client.get_project(project)
        refs = client.list_branches(repository.id) + client.list_tags(repository.id)
        commits = client.list_commits(repository.id, ref=repository.default_branch, per_page=1)
    except GitLabAPIError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1) from exc

    builder = RefDescriptorBuilder(client, settings.policy())
    table = Table(title=f"{repository.path_with_namespace} (id {repository.id})")
    table.add_column("Ref")
    table.add_column("Version")
    table.add_column("Commit")
    table.add_column("Manifest")
    for ref in refs:
        entry = builder.fetch_ref(repository, ref)
        verdict = next(iter(entry.values()))["name"] if entry else "-"
        table.add_row(ref.name, resolve_version(ref.name), ref.commit_id[:10], verdict)
    console.print(table)

    console.print(f"Last activity: {repository.last_activity_at.isoformat()}")
    if commits:
        latest = commits[0]
        console.print(f"Latest commit: {latest.get('short_id')} {latest.get('title', '')}")
    else:
        console.print("Latest commit: none")


@app.command("config")
def show_config(config: Optional[Path] = ConfigOption) -> None:
    """Print the resolved configuration (the API key is masked)."""
    settings = _load(config)
    table = Table(show_header=False)
    for key, value in settings.model_dump().items():
        if key == "gitlab_api_key" and value:
            value = "********"
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
