"""
Command line interface for media-ingest.

Discover candidate collections, run bulk ingestion and inspect jobs.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..core.errors import IngestError
from ..core.types import BulkItemStatus, CollectionKind
from ..ingest.bulk_ingestion import BulkIngestionService, parse_request
from ..ingest.candidate_scanner import CandidateScanner
from ..jobs.dispatch import CeleryDispatcher
from ..jobs.job_service import JobService
from ..jobs.monitor import JobMonitor
from ..version import get_version_string

console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    BulkItemStatus.SUCCESS: "green",
    BulkItemStatus.RESUMED: "cyan",
    BulkItemStatus.SKIPPED: "yellow",
    BulkItemStatus.ERROR: "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_job_service() -> JobService:
    return JobService()


def build_bulk_service() -> BulkIngestionService:
    return BulkIngestionService(CeleryDispatcher(), jobs=build_job_service())


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(get_version_string(), prog_name="media-ingest")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Bulk collection ingestion and job progress tools."""
    setup_logging(verbose)


@cli.command()
@click.argument("parent", type=click.Path())
@click.option(
    "--recursive/--top-level",
    default=False,
    help="Descend into all subfolders (default: direct children only)",
)
@click.option("--prefix", default=None, help="Only archives whose name contains this text")
def scan(parent: str, recursive: bool, prefix: Optional[str]) -> None:
    """List candidate collections under PARENT."""
    try:
        candidates = list(CandidateScanner().scan_candidates(parent, recursive, prefix))
    except IngestError as e:
        _fail(str(e))
        return

    if not candidates:
        console.print("[yellow]No candidate collections found[/yellow]")
        return

    table = Table(title=f"Candidates under {parent}")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Path", style="dim")
    for candidate in candidates:
        kind_style = "cyan" if candidate.kind == CollectionKind.FOLDER else "magenta"
        table.add_row(
            candidate.name, f"[{kind_style}]{candidate.kind.value}[/{kind_style}]", candidate.path
        )
    console.print(table)
    console.print(f"\n{len(candidates)} candidates")


@cli.command("bulk-add")
@click.argument("parent", type=click.Path())
@click.option("--recursive/--top-level", default=False, help="Descend into all subfolders")
@click.option("--prefix", default=None, help="Only archives whose name contains this text")
@click.option("--overwrite", is_flag=True, help="Clear and rescan existing collections")
@click.option("--resume", is_flag=True, help="Generate only missing thumbnails/cache")
@click.option("--library-id", default=None, help="Library to attach new collections to")
@click.option("--dry-run", is_flag=True, help="Show the plan without changing anything")
def bulk_add(
    parent: str,
    recursive: bool,
    prefix: Optional[str],
    overwrite: bool,
    resume: bool,
    library_id: Optional[str],
    dry_run: bool,
) -> None:
    """Register, rescan or resume every collection under PARENT."""
    try:
        request = parse_request(
            {
                "parent_path": parent,
                "include_subfolders": recursive,
                "collection_prefix": prefix,
                "overwrite_existing": overwrite,
                "resume_incomplete": resume,
                "library_id": library_id,
            }
        )
        service = build_bulk_service()

        if dry_run:
            planned = service.plan(request)
            table = Table(title="Planned actions (dry run)")
            table.add_column("Name", style="bold")
            table.add_column("Kind")
            table.add_column("Action", style="cyan")
            table.add_column("Reason")
            for candidate, decision in planned:
                table.add_row(
                    candidate.name, candidate.kind.value, decision.action.value, decision.reason
                )
            console.print(table)
            return

        result = service.bulk_add_collections(request)
    except IngestError as e:
        _fail(str(e))
        return

    table = Table(title=f"Bulk add from {parent}")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Message")
    table.add_column("Job", style="dim")
    for row in result.results:
        style = STATUS_STYLES[row.status]
        table.add_row(
            row.name,
            row.kind.value,
            f"[{style}]{row.status.value}[/{style}]",
            row.message,
            row.job_id or "",
        )
    console.print(table)

    summary = result.summary()
    console.print(
        f"\nProcessed {summary['total_processed']}: "
        f"[green]{summary['success']} success[/green], "
        f"[cyan]{summary['resumed']} resumed[/cyan], "
        f"[yellow]{summary['skipped']} skipped[/yellow], "
        f"[red]{summary['errors']} errors[/red]"
    )
    if result.error_count:
        sys.exit(2)


@cli.command("job-health")
@click.argument("job_id")
def job_health(job_id: str) -> None:
    """Show status, stage progress and health of JOB_ID."""
    service = build_job_service()
    try:
        job = service.get_job(job_id)
        health = service.get_job_health(job_id)
    except IngestError as e:
        _fail(str(e))
        return

    console.print(f"[bold]Job {job.id}[/bold] ({job.job_type}): {job.status.value}")
    console.print(f"Progress: {job.progress_percent}%")
    if job.message:
        console.print(f"[dim]{job.message}[/dim]")

    if job.stages:
        table = Table()
        table.add_column("Stage", style="bold")
        table.add_column("Status")
        table.add_column("Completed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Total", justify="right")
        for stage in job.stages:
            table.add_row(
                stage.name,
                stage.status.value,
                str(stage.completed),
                str(stage.failed),
                str(stage.total),
            )
        console.print(table)

    if health.is_healthy:
        console.print("[green]✓ Healthy[/green]")
    else:
        for issue in health.issues:
            console.print(f"[yellow]⚠ {issue}[/yellow]")


@cli.command()
@click.argument("job_id")
def cancel(job_id: str) -> None:
    """Cancel JOB_ID (workers skip its remaining items)."""
    try:
        cancelled = build_job_service().cancel_job(job_id)
    except IngestError as e:
        _fail(str(e))
        return

    if cancelled:
        console.print(f"[green]✓ Job {job_id} cancelled[/green]")
    else:
        console.print(f"[yellow]Job {job_id} already finished; nothing to cancel[/yellow]")


@cli.command()
def sweep() -> None:
    """Run one reconciliation sweep over active jobs."""
    result = JobMonitor(build_job_service()).sweep()
    console.print(
        f"Checked {result.checked} jobs: {result.transitioned} transitioned, "
        f"{len(result.stale_flagged)} newly stale, {len(result.failure_alerts)} failure alerts"
    )
    for error in result.errors:
        console.print(f"[red]{error}[/red]")


@cli.command("init-db")
def init_db_command() -> None:
    """Create database tables."""
    from ..db.connection import init_db

    init_db()
    console.print("[green]✓ Database initialized[/green]")


if __name__ == "__main__":
    cli()
