"""Command line interface for git-tidy."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from git_tidy import __version__
from git_tidy.config import cli_layer, load_config
from git_tidy.exceptions import ConfigError, DeletionError, RepositoryError
from git_tidy.git import BranchRecord, GitRepo
from git_tidy.policy import CleanupPlan, plan

app = typer.Typer(help="Delete merged and stale local git branches")
console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Send package log records to stderr through Rich."""
    package_logger = logging.getLogger("git_tidy")
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(handler, RichHandler) for handler in package_logger.handlers):
        package_logger.addHandler(RichHandler(console=Console(stderr=True), show_time=False, show_path=False))


def _ago(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_age(when: datetime, now: datetime) -> str:
    """Describe how long ago a commit was made."""
    seconds = max(int((now - when).total_seconds()), 0)
    days = seconds // 86400
    if days == 0:
        hours = seconds // 3600
        if hours == 0:
            return _ago(seconds // 60, "minute")
        return _ago(hours, "hour")
    if days < 30:
        return _ago(days, "day")
    if days < 365:
        return _ago(days // 30, "month")
    return _ago(days // 365, "year")


def create_table(title: str, title_style: str) -> Table:
    """Create a table with the standard branch column."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style=title_style,
        show_edge=True,
    )
    table.add_column("", justify="center", no_wrap=True)
    table.add_column("Branch", style="cyan", no_wrap=True)
    return table


def show_plan(cleanup: CleanupPlan, now: datetime) -> None:
    """Print the branches to delete, the protected branches and the kept branches."""
    if cleanup.eligible:
        table = create_table("Branches to Delete", "bold red")
        table.add_column("Last Commit", style="yellow", no_wrap=True)
        table.add_column("Status", style="magenta", justify="center", no_wrap=True)
        for branch in cleanup.eligible:
            status = "[green]merged[/green]" if branch.merged else "unmerged"
            table.add_row("[red]✗[/red]", escape(branch.name), format_age(branch.last_commit, now), status)
        console.print(table)

    if cleanup.protected:
        table = create_table("Protected Branches", "bold blue")
        table.add_column("Reason", style="dim", overflow="fold")
        for branch, decision in cleanup.protected:
            name = escape(branch.name)
            if branch.is_current:
                name = f"{name} [turquoise2](current)[/turquoise2]"
            table.add_row("[green]✓[/green]", name, escape(decision.reason))
        console.print()
        console.print(table)

    if cleanup.filtered_out:
        table = create_table("Kept Branches", "bold yellow")
        table.add_column("Last Commit", style="yellow", no_wrap=True)
        table.add_column("Reason", style="dim", overflow="fold")
        for branch, decision in cleanup.filtered_out:
            table.add_row("[yellow]✋[/yellow]", escape(branch.name), format_age(branch.last_commit, now), decision.reason)
        console.print()
        console.print(table)


def confirm_deletion(count: int) -> bool:
    """Ask before deleting. End of input counts as no."""
    console.print()
    try:
        confirm = input(f"Delete {count} branch(es)? [y/N] ")
    except EOFError:
        return False
    return confirm.strip().lower() == "y"


def delete_branches(repo: GitRepo, branches: list[BranchRecord]) -> list[DeletionError]:
    """Delete branches one by one, carrying on past failures.

    Returns:
        The failures, in deletion order
    """
    deleted = []
    failures = []
    console.print()
    for branch in branches:
        name = escape(branch.name)
        try:
            if repo.delete_branch(branch.name):
                deleted.append(branch.name)
                console.print(f"[green]Deleted[/green] {name}")
            else:
                console.print(f"[yellow]Skipped[/yellow] {name}: now current branch, skipped")
        except DeletionError as err:
            logger.debug("Deletion of %s failed", branch.name, exc_info=err)
            failures.append(err)
            console.print(f"[red]Failed to delete[/red] {name}: {escape(err.reason)}")

    console.print(f"\n[bold green]Deleted {len(deleted)} branch(es).[/bold green]")
    if failures:
        console.print(f"[bold red]{len(failures)} branch(es) could not be deleted.[/bold red]")
    return failures


def version_callback(value: bool) -> None:
    if value:
        print(f"git-tidy {__version__}")
        raise typer.Exit()


@app.command()
def main(
    clean: bool = typer.Option(False, "--clean", help="Delete the listed branches (default: preview only)"),
    merged: bool = typer.Option(False, "--merged", help="Only delete branches merged into the base branch"),
    older_than: Optional[str] = typer.Option(
        None,
        "--older-than",
        metavar="DURATION",
        help="Only delete branches whose last commit is older than DURATION (e.g. 30d, 2w, 12h)",
    ),
    dry_run: Optional[bool] = typer.Option(
        None, "--dry-run/--no-dry-run", help="Preview without deleting; wins over --clean when given"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    keep_pattern: Optional[list[str]] = typer.Option(
        None, "--keep-pattern", metavar="REGEX", help="Protect branches matching REGEX (repeatable)"
    ),
    base: Optional[str] = typer.Option(
        None, "--base", help="Branch to check merge status against (default: current branch)"
    ),
    path: Annotated[Path, typer.Option(help="Path to git repository")] = Path("."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Preview, then optionally delete, merged and stale local branches."""
    setup_logging(verbose)

    try:
        flags = cli_layer(keep_pattern, merged, older_than, base)
        repo = GitRepo(path)
        config = load_config(repo.working_dir, flags)
        branches = repo.list_branches(config.base_branch)
    except (ConfigError, RepositoryError) as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err

    now = datetime.now(timezone.utc)
    cleanup = plan(branches, config, now)
    show_plan(cleanup, now)

    if not cleanup.eligible:
        console.print()
        console.print(
            Panel(
                "[green]No branches to delete.[/green]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    if not clean or dry_run:
        console.print("\n[bold blue]Run with --clean to delete these branches.[/bold blue]")
        return

    if not force:
        try:
            confirmed = confirm_deletion(len(cleanup.eligible))
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled[/yellow]")
            raise typer.Exit(code=130) from None
        if not confirmed:
            console.print("\n[yellow]Operation cancelled[/yellow]")
            return

    if delete_branches(repo, cleanup.eligible):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
