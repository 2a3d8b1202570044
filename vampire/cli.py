"""
Vampire CLI — operator tooling around the job engine.

  vampire providers                   (list agent backends)
  vampire test-provider claude        (is the backend installed and answering?)
  vampire run --repo <path> --issue 42
  vampire run --repo <path> --title "Add dark mode" --body "..."
  vampire run --repo <path> --follow-up-branch feat/42 --message "Also cover the footer"

`run` executes one job in-process against an in-memory job store and
prints its live log.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from vampire import __codename__, __version__
from vampire.config_loader import load_config
from vampire.controller import JobEngine
from vampire.models import FollowUpContext, Job, JobStatus, Project
from vampire.providers import ProviderNotFoundError, build_registry
from vampire.repository import InMemoryJobRepository

load_dotenv()
load_dotenv(Path.home() / ".vampire" / ".env")

app = typer.Typer(
    name="vampire",
    help=f"{__codename__} — hand issues to a coding agent, get branches back.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_COLORS = {
    JobStatus.COMPLETED: "green",
    JobStatus.CANCELLED: "yellow",
    JobStatus.FAILED: "red",
}


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def providers():
    """List agent providers."""
    table = Table(title="Agent Providers", border_style="cyan")
    table.add_column("Name")
    table.add_column("Display name")
    table.add_column("Status")

    for info in build_registry(load_config()).list_providers():
        status = "[dim]coming soon[/]" if info.coming_soon else "[green]available[/]"
        table.add_row(info.name, info.display_name, status)

    console.print(table)


@app.command("test-provider")
def test_provider(
    name: str = typer.Argument("claude", help="Provider name"),
):
    """Check that a provider's CLI is installed and responding."""
    try:
        provider = build_registry(load_config()).get(name)
    except ProviderNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    console.print(f"[cyan]Testing {provider.info.display_name}...[/]")
    result = asyncio.run(provider.test_connection())
    color = "green" if result.ok else "red"
    console.print(f"[{color}]{result.message}[/]")
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def run(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project checkout"),
    issue: Optional[int] = typer.Option(None, "--issue", "-i", help="GitHub issue number"),
    title: Optional[str] = typer.Option(None, "--title", help="Task title (direct mode)"),
    body: str = typer.Option("", "--body", help="Task description (direct mode)"),
    task_type: str = typer.Option("feat", "--type", help="Task type, used as branch prefix"),
    base: str = typer.Option("main", "--base", help="Base branch"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Agent provider"),
    rules: Optional[str] = typer.Option(None, "--rules", help="Extra project rules for the agent"),
    follow_up_branch: Optional[str] = typer.Option(None, "--follow-up-branch", help="Existing branch to continue"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Follow-up feedback"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one job and stream its log."""
    _configure_logging(verbose)

    repo = repo.resolve()
    if not repo.exists():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)
    if issue is None and not title and not follow_up_branch:
        console.print("[red]Specify --issue, --title or --follow-up-branch[/]")
        raise typer.Exit(1)
    if follow_up_branch and not (message and message.strip()):
        console.print("[red]--follow-up-branch needs a --message[/]")
        raise typer.Exit(1)

    config = load_config()
    project = Project(
        path=str(repo),
        base_branch=base,
        provider=provider or config.engine.default_provider,
        prompt=rules,
    )
    job = Job(id=1, issue_no=issue, type=task_type, issue_title=title or "", description=body)
    follow_up = (
        FollowUpContext(branch=follow_up_branch, message=message.strip())
        if follow_up_branch else None
    )

    status, final = asyncio.run(_run_job(job, project, follow_up, config))

    console.print(f"\n[bold {STATUS_COLORS.get(status, 'red')}]Status: {status.value}[/]")
    if final and final.pr_body and status is JobStatus.COMPLETED:
        console.print(Panel(final.pr_body, title=final.pr_title or "PR body", border_style="cyan"))
    if status is not JobStatus.COMPLETED:
        raise typer.Exit(1)


async def _run_job(job: Job, project: Project, follow_up: FollowUpContext | None, config):
    repository = InMemoryJobRepository([job])
    engine = JobEngine(repository, config=config)
    worker = engine.start(job, project, follow_up)
    subscription = engine.subscribe(job.id)

    try:
        async for event in subscription:
            if event.kind == "log":
                console.print(event.data, markup=False, highlight=False)
    except asyncio.CancelledError:
        engine.cancel(job.id)
        raise

    status = await worker.wait()
    return status, await repository.get_job(job.id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


if __name__ == "__main__":
    app()
