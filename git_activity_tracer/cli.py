"""Command-line interface for git-activity-tracer."""

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from .cache import DEFAULT_CACHE_DIRECTORY, CacheStore
from .config import get_config_path, load_configuration, remove_project_id, set_project_id
from .dates import parse_range
from .errors import ActivityTrackerError, ValidationError
from .formatters import OUTPUT_FORMATS, format_contributions, output_filename
from .initialization import initialize_connectors
from .report import generate_commits_report, generate_report

app = typer.Typer(help="Track your commits, pull/merge requests and reviews across GitHub and GitLab")
cache_app = typer.Typer(help="Inspect or clear the local contribution cache")
project_id_app = typer.Typer(help="Map repositories to project ids")
app.add_typer(cache_app, name="cache")
app.add_typer(project_id_app, name="project-id")

console = Console()


def main():
    """Entry point for the CLI application."""
    app()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _fail(error: Exception):
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    if isinstance(error, ValidationError):
        for suggestion in error.suggestions:
            console.print(f"  - {escape(suggestion)}")
    raise typer.Exit(1)


async def _collect(generator, connectors, configuration, from_date, to_date, cache_store):
    async with AsyncExitStack() as stack:
        for connector in connectors:
            await stack.enter_async_context(connector)
        return await generator(connectors, configuration, from_date, to_date, cache_store)


def _run_report(
    generator,
    title: str,
    config_file: Path | None,
    from_date: str | None,
    to_date: str | None,
    last_week: bool,
    last_month: bool,
    output_format: str,
    output: Path | None,
    with_links: bool,
    no_cache: bool,
    verbose: bool,
) -> None:
    _configure_logging(verbose)

    output_format = output_format.lower()
    try:
        if output_format not in OUTPUT_FORMATS:
            raise ValidationError(
                f"Unknown output format: {output_format}",
                [f"Use one of: {', '.join(OUTPUT_FORMATS)}"],
            )
        start, end = parse_range(from_date, to_date, last_week, last_month)
        configuration = load_configuration(config_file)
        connectors = initialize_connectors(configuration)
    except (ActivityTrackerError, OSError) as e:
        _fail(e)

    cache_store = None
    if not no_cache:
        cache_store = CacheStore(DEFAULT_CACHE_DIRECTORY, configuration.base_branches)

    console.print(f"[bold blue]{title}[/bold blue]")
    console.print(f"Period: {start.date()} to {end.date()}")
    console.print(f"Platforms: {', '.join(c.get_platform_name() for c in connectors)}\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Fetching contributions...", total=None)
        contributions = asyncio.run(
            _collect(generator, connectors, configuration, start, end, cache_store)
        )

    content = format_contributions(contributions, output_format, with_links)

    if output_format == "console":
        console.print(content, markup=False, highlight=False)
        console.print(f"\n[bold green]{len(contributions)} contributions[/bold green]")
        return

    output_path = output or Path(output_filename(start, end, output_format))
    try:
        output_path.write_text(content + "\n")
    except OSError as e:
        _fail(e)
    console.print(f"[bold green]Wrote {len(contributions)} contributions to {output_path}[/bold green]")


@app.command()
def report(
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
    from_date: str = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    to_date: str = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    last_week: bool = typer.Option(False, "--last-week", help="Report on last Monday-Sunday week"),
    last_month: bool = typer.Option(False, "--last-month", help="Report on the last month"),
    output_format: str = typer.Option("console", "--format", "-f", help="console, json or csv"),
    output: Path = typer.Option(None, "--output", "-o", help="Output file for json/csv formats"),
    with_links: bool = typer.Option(False, "--with-links", help="Include URLs in the output"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not read or update the cache"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Report base-branch commits, pull/merge requests and reviews.

    Without dates, the current week (Monday to today) is used.
    """
    _run_report(
        generate_report,
        "Git Activity Report",
        config_file,
        from_date,
        to_date,
        last_week,
        last_month,
        output_format,
        output,
        with_links,
        no_cache,
        verbose,
    )


@app.command()
def commits(
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
    from_date: str = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    to_date: str = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    last_week: bool = typer.Option(False, "--last-week", help="Report on last Monday-Sunday week"),
    last_month: bool = typer.Option(False, "--last-month", help="Report on the last month"),
    output_format: str = typer.Option("console", "--format", "-f", help="console, json or csv"),
    output: Path = typer.Option(None, "--output", "-o", help="Output file for json/csv formats"),
    with_links: bool = typer.Option(False, "--with-links", help="Include URLs in the output"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not read or update the cache"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Report commits from every branch, including merged pull/merge requests.

    Slower than `report`: each active repository's branches are walked.
    """
    _run_report(
        generate_commits_report,
        "Git Commits Report",
        config_file,
        from_date,
        to_date,
        last_week,
        last_month,
        output_format,
        output,
        with_links,
        no_cache,
        verbose,
    )


def _format_bytes(size: int) -> str:
    for unit in ("Bytes", "KB", "MB"):
        if size < 1024:
            return f"{size} {unit}" if unit == "Bytes" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"


@cache_app.command("status")
def cache_status():
    """Show cached identities, their sizes and date ranges."""
    status = CacheStore(DEFAULT_CACHE_DIRECTORY).status()

    if not status.exists:
        console.print("Cache is empty")
        return

    console.print("[bold]Cache Status:[/bold]")
    console.print(f"  Total size: {_format_bytes(status.size)}")
    console.print(f"  Total entries: {len(status.entries)}\n")

    for entry in status.entries:
        console.print(f"  [cyan]{escape(entry.platform)}/{escape(entry.username)}[/cyan]")
        console.print(f"    Contributions: {entry.contribution_count}")
        console.print(f"    Date range: {entry.earliest[:10]} to {entry.latest[:10]}")
        console.print(f"    Last updated: {entry.last_updated[:10]}\n")


@cache_app.command("clear")
def cache_clear():
    """Delete all cached data."""
    try:
        cleared = CacheStore(DEFAULT_CACHE_DIRECTORY).clear()
    except OSError as e:
        _fail(e)

    if cleared == 0:
        console.print("Cache is already empty")
    else:
        console.print(f"[green]Cleared {cleared} cache {'file' if cleared == 1 else 'files'}[/green]")


@project_id_app.command("list")
def project_id_list(
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
):
    """List repository to project id mappings."""
    try:
        configuration = load_configuration(config_file)
    except (ActivityTrackerError, OSError) as e:
        _fail(e)

    if not configuration.repository_project_ids:
        console.print("No repository project ID mappings configured.")
        return

    console.print("[bold]Repository Project ID Mappings:[/bold]")
    for repository, project_id in configuration.repository_project_ids.items():
        console.print(f"  {escape(repository)} -> {escape(project_id)}")


@project_id_app.command("add")
def project_id_add(
    repository: str = typer.Argument(..., help="Repository as owner/name"),
    project_id: str = typer.Argument(..., help="Project id to attach"),
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
):
    """Map a repository to a project id."""
    try:
        set_project_id(repository, project_id, config_file)
    except (ActivityTrackerError, OSError) as e:
        _fail(e)

    console.print(f"[green]Mapped {escape(repository)} -> {escape(project_id)}[/green]")


@project_id_app.command("remove")
def project_id_remove(
    repository: str = typer.Argument(..., help="Repository as owner/name"),
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
):
    """Remove a repository's project id mapping."""
    try:
        removed = remove_project_id(repository, config_file)
    except (ActivityTrackerError, OSError) as e:
        _fail(e)

    if not removed:
        console.print(f"[yellow]No mapping found for {escape(repository)}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Removed mapping for {escape(repository)}[/green]")


@app.command("show-config")
def show_config(
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to configuration file"),
):
    """Show the active configuration and which tokens are available."""
    try:
        configuration = load_configuration(config_file)
    except (ActivityTrackerError, OSError) as e:
        _fail(e)

    console.print(f"[bold blue]Configuration[/bold blue] ({config_file or get_config_path()})\n")
    console.print(yaml.safe_dump(configuration.to_dict(), sort_keys=False), markup=False, highlight=False)

    console.print("[bold]Tokens:[/bold]")
    for variable in ("GH_TOKEN", "GITLAB_TOKEN"):
        console.print(f"  {variable}: {'set' if os.environ.get(variable, '').strip() else 'not set'}")
    console.print(f"  GITLAB_HOST: {escape(os.environ.get('GITLAB_HOST') or 'https://gitlab.com (default)')}")
    console.print(f"\nCache directory: {DEFAULT_CACHE_DIRECTORY}")


if __name__ == "__main__":
    main()
