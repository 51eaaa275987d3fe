"""CLI interface for booking operations.

Provides commands for:
- Initializing the database and loading criteria rules
- Evaluating face terms against the criteria table
- Reviewing and deciding pending authorizations
- Inspecting a proposal's reservations
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ...config import get_settings
from ...errors import BookingError
from ...events import get_dispatcher
from ...flows import CampaignWorkflow
from ...models.core import AuthorizationStatus, FaceRequest
from ...models.criteria import CriteriaRule
from ...storage import StorageBackend, get_storage_backend

app = typer.Typer(
    name="ooh-booking",
    help="OOH Booking CLI - Authorize campaign requests and book inventory",
)
console = Console()

STATUS_STYLES = {
    AuthorizationStatus.APPROVED: "green",
    AuthorizationStatus.PENDING: "yellow",
    AuthorizationStatus.REJECTED: "red",
}

DatabaseOption = typer.Option(None, "--database", "-d", help="SQLite database URL")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Logging level"),
):
    """Configure logging for every command."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _run(database: Optional[str], action: Callable[[StorageBackend], Awaitable[Any]]) -> Any:
    """Run an async action against a connected storage backend."""

    async def runner() -> Any:
        storage = get_storage_backend(database_url=database)
        await storage.connect()
        try:
            return await action(storage)
        finally:
            await storage.disconnect()

    try:
        return asyncio.run(runner())
    except BookingError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)


def _status(status: AuthorizationStatus) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}]{status.value}[/{style}]"


@app.command("init-db")
def init_db(database: Optional[str] = DatabaseOption):
    """Create the database schema."""

    async def action(storage: StorageBackend) -> None:
        return None

    _run(database, action)
    console.print("[green]✓[/green] Database initialized")


@app.command("load-criteria")
def load_criteria(
    path: Path = typer.Argument(..., exists=True, readable=True, help="JSON file with criteria rows"),
    database: Optional[str] = DatabaseOption,
):
    """Load criteria rules from a JSON list of threshold rows."""
    rows = json.loads(path.read_text(encoding="utf-8"))
    rules = [CriteriaRule.from_thresholds(**row) for row in rows]

    async def action(storage: StorageBackend) -> list[CriteriaRule]:
        return [await storage.save_criteria_rule(rule) for rule in rules]

    saved = _run(database, action)
    console.print(f"[green]✓[/green] Loaded {len(saved)} criteria rule(s)")


@app.command()
def evaluate(
    format: str = typer.Option(..., "--format", "-f", help="Face format (e.g. PARABUS)"),
    faces: int = typer.Option(..., "--faces", "-n", help="Requested faces"),
    cost: float = typer.Option(..., "--cost", "-c", help="Total cost"),
    bonus: int = typer.Option(0, "--bonus", "-b", help="Bonus faces"),
    city: Optional[str] = typer.Option(None, "--city", help="City"),
    state: Optional[str] = typer.Option(None, "--state", help="State"),
    medium: Optional[str] = typer.Option(None, "--medium", "-m", help="Medium type label"),
    database: Optional[str] = DatabaseOption,
):
    """Evaluate face terms against the stored criteria without saving them."""
    face = FaceRequest(
        proposal_id="preview",
        format=format,
        requested_faces=faces,
        bonus_faces=bonus,
        cost=cost,
        city=city,
        state=state,
        medium_type=medium,
    )

    async def action(storage: StorageBackend):
        workflow = CampaignWorkflow(storage)
        evaluator = await workflow.get_evaluator()
        return evaluator.evaluate(face)

    verdict = _run(database, action)

    console.print(Panel(f"[cyan]{format}[/cyan] in {verdict.market or 'n/a'}", title="Evaluation"))
    console.print(f"Total faces: {verdict.total_faces}")
    console.print(f"Effective tariff: ${verdict.effective_tariff:.2f}")
    console.print(f"DG: {_status(verdict.dg_status)}" + (f" - {verdict.reason_dg}" if verdict.reason_dg else ""))
    console.print(f"DCM: {_status(verdict.dcm_status)}" + (f" - {verdict.reason_dcm}" if verdict.reason_dcm else ""))


@app.command()
def pending(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    database: Optional[str] = DatabaseOption,
):
    """Show faces of a proposal with their authorization state."""

    async def action(storage: StorageBackend) -> list[FaceRequest]:
        await storage.require_proposal(proposal_id)
        return await storage.list_faces(proposal_id)

    faces = _run(database, action)

    table = Table(title=f"Proposal #{proposal_id}")
    table.add_column("Face", style="cyan")
    table.add_column("Format")
    table.add_column("Faces")
    table.add_column("Tariff", style="green")
    table.add_column("DG")
    table.add_column("DCM")
    table.add_column("Reason")

    for face in faces:
        table.add_row(
            str(face.face_id),
            face.format or "",
            str(face.total_faces or 0),
            f"${face.effective_tariff or 0:.2f}",
            _status(face.dg_status),
            _status(face.dcm_status),
            face.rejection_reason or face.reason_dg or face.reason_dcm or "",
        )

    console.print(table)


@app.command()
def summary(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    database: Optional[str] = DatabaseOption,
):
    """Show aggregate authorization counts for a proposal."""

    async def action(storage: StorageBackend):
        return await CampaignWorkflow(storage).tracker.summarize(proposal_id)

    result = _run(database, action)

    console.print(Panel(f"Proposal [cyan]#{proposal_id}[/cyan]", title="Authorization"))
    console.print(f"Faces: {result.total}")
    console.print(f"Fully approved: {result.fully_approved}")
    console.print(f"Pending DG: {result.pending_dg}")
    console.print(f"Pending DCM: {result.pending_dcm}")
    console.print(f"Rejected: {result.rejected}")
    if result.can_proceed:
        console.print("[green]✓ Proposal can proceed[/green]")
    else:
        console.print("[yellow]Proposal cannot proceed yet[/yellow]")


@app.command()
def approve(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    track: str = typer.Argument(..., help="Track to approve: dg or dcm"),
    database: Optional[str] = DatabaseOption,
):
    """Approve every pending face of a proposal on one track."""

    async def action(storage: StorageBackend):
        dispatcher = get_dispatcher()
        try:
            return await CampaignWorkflow(storage, dispatcher=dispatcher).approve(proposal_id, track)
        finally:
            await dispatcher.close()

    result = _run(database, action)
    console.print(
        f"[green]✓[/green] Approved {result.count} face(s) on {result.track.upper()}; "
        f"resolved {result.resolved_tasks} task(s)"
    )


@app.command()
def reject(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    track: str = typer.Argument(..., help="Track to reject: dg or dcm"),
    reason: str = typer.Option(..., "--reason", "-r", help="Rejection reason"),
    database: Optional[str] = DatabaseOption,
):
    """Reject every pending face of a proposal on one track."""

    async def action(storage: StorageBackend):
        dispatcher = get_dispatcher()
        try:
            return await CampaignWorkflow(storage, dispatcher=dispatcher).reject(proposal_id, track, reason)
        finally:
            await dispatcher.close()

    result = _run(database, action)
    console.print(f"[red]✗[/red] Rejected {result.count} face(s) on {result.track.upper()}: {reason}")


@app.command()
def reservations(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    database: Optional[str] = DatabaseOption,
):
    """Show active reservations of a proposal."""

    async def action(storage: StorageBackend):
        workflow = CampaignWorkflow(storage)
        totals = await workflow.allocator.summarize_reservations(proposal_id)
        rows = await storage.list_reservations(proposal_id=proposal_id)
        return totals, rows

    totals, rows = _run(database, action)

    table = Table(title=f"Reservations - proposal #{proposal_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Space")
    table.add_column("Slot")
    table.add_column("Face")
    table.add_column("Period")
    table.add_column("Status", style="yellow")
    table.add_column("Group")
    table.add_column("APS")

    for reservation in rows:
        table.add_row(
            str(reservation.reservation_id),
            str(reservation.space_id),
            str(reservation.slot_id),
            str(reservation.face_id),
            str(reservation.period_id),
            reservation.status.value,
            str(reservation.group_id or ""),
            str(reservation.aps or ""),
        )

    console.print(table)
    by_status = ", ".join(f"{status.value}: {count}" for status, count in totals.by_status.items())
    console.print(f"Total: {totals.total} ({by_status or 'none'}); complete groups: {totals.complete_groups}")


if __name__ == "__main__":
    app()
