"""
CLI interface for Referral Intake.
Uses Typer for commands and Rich for output.
"""

from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from referral_intake.config import get_settings
from referral_intake.errors import DownstreamError, NotFoundError, TransitionError
from referral_intake.logging_config import configure_logging
from referral_intake.models import ButtonVariant, ReferralStatus
from referral_intake.services.graph_service import GraphService
from referral_intake.services.workflow_service import WorkflowService, get_workflow_service

app = typer.Typer(
    name="referral-intake",
    help="Slack referral intake, scheduling and invoicing",
    no_args_is_help=True,
)

console = Console()

STATUS_COLORS = {
    ReferralStatus.PENDING: "yellow",
    ReferralStatus.SCHEDULED: "blue",
    ReferralStatus.COMPLETED: "cyan",
    ReferralStatus.INVOICED: "magenta",
    ReferralStatus.PAID: "green",
}


def _workflow() -> WorkflowService:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        return get_workflow_service(settings)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)


def _configured(flag: bool) -> str:
    return "[green]Configured[/green]" if flag else "[yellow]Not configured[/yellow]"


# ============================================================================
# Status Commands
# ============================================================================
@app.command("status")
def show_status():
    """Show which integrations are configured."""
    settings = get_settings()
    checks = settings.configuration_checks()

    console.print(Panel.fit(
        f"[bold]{settings.app_name}[/bold]\n"
        f"Record store: {settings.record_backend}\n"
        f"Practice timezone: {settings.practice_timezone}\n"
        f"Relay webhook: {_configured(bool(settings.relay_webhook_url))}",
        title="System Status",
        border_style="blue",
    ))

    table = Table(title="Configuration Checks", box=box.ROUNDED)
    table.add_column("Check", style="cyan")
    table.add_column("State")
    for name, ok in checks.items():
        table.add_row(name.replace("_", " ").title(), _configured(ok))
    console.print(table)

    if not all(checks.values()):
        raise typer.Exit(1)


@app.command("slots")
def show_slots():
    """List the appointment slots the referral form would offer right now."""
    workflow = _workflow()
    try:
        slots = workflow.available_slots()
    except DownstreamError as e:
        console.print(f"[red]Availability lookup failed: {e}[/red]")
        raise typer.Exit(1)

    if not slots:
        console.print("[dim]No free slots in the availability window.[/dim]")
        return

    table = Table(title=f"Available Slots ({len(slots)})", box=box.ROUNDED)
    table.add_column("Slot", style="cyan")
    table.add_column("Value", style="dim")
    for slot in slots:
        table.add_row(slot.display_label, slot.value)
    console.print(table)


# ============================================================================
# Slack Commands
# ============================================================================
@app.command("post-button")
def post_button(
    variant: ButtonVariant = typer.Option(ButtonVariant.REFERRAL, "--variant", "-v", help="Button to post"),
    channel: Optional[str] = typer.Option(None, "--channel", "-c", help="Channel ID (defaults per variant)"),
    referral_id: Optional[str] = typer.Option(None, "--referral-id", help="Bind a completion button to a referral"),
):
    """Post a 'New Referral' or 'Complete Service' button to a channel."""
    settings = get_settings()
    if not channel:
        if variant == ButtonVariant.REFERRAL:
            channel = settings.channel_accountant_referral
        else:
            channel = settings.channel_services_completed
    if not channel:
        console.print("[red]No channel specified and no default configured.[/red]")
        raise typer.Exit(1)

    try:
        result = _workflow().post_start_button(channel, variant, referral_id)
    except DownstreamError as e:
        console.print(f"[red]Failed to post button: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Posted {variant.value} button to {result['channel']} (ts {result['ts']})[/green]")


# ============================================================================
# Referral Commands
# ============================================================================
referral_app = typer.Typer(help="Inspect and update referral records")
app.add_typer(referral_app, name="referral")


@referral_app.command("show")
def show_referral(
    referral_id: str = typer.Argument(..., help="Referral ID, e.g. REF-1A2B3C4D"),
):
    """Show a referral as stored."""
    try:
        record = _workflow().store.find(referral_id.upper())
    except NotFoundError:
        console.print(f"[red]Referral {referral_id} not found.[/red]")
        raise typer.Exit(1)
    except DownstreamError as e:
        console.print(f"[red]Could not read the record store: {e}[/red]")
        raise typer.Exit(1)

    console.print()
    console.print(Panel.fit(
        f"[bold]{record.id}[/bold] - {record.client_name or 'Unknown Client'}",
        border_style="blue",
    ))

    color = STATUS_COLORS.get(record.status, "white")
    console.print(f"Status: [{color}]{record.status.value.title()}[/{color}]")
    console.print(f"Invoice: {record.invoice_status.value.title()}")
    console.print()

    console.print("[bold cyan]Client[/bold cyan]")
    console.print(f"  Name: {record.client_name or '-'}")
    console.print(f"  Email: {record.client_email or '-'}")
    console.print(f"  Phone: {record.client_phone or '-'}")
    console.print(f"  Service: {record.service_type.label}")
    console.print()

    console.print("[bold cyan]Referral[/bold cyan]")
    console.print(f"  Broker: {record.broker_name or '-'}")
    console.print(f"  Referred: {record.referral_date}")
    console.print(f"  Appointment: {record.appointment_datetime or '-'}")
    console.print(f"  Completed: {record.completed_date or '-'}")

    if record.notes:
        console.print()
        console.print("[bold cyan]Notes[/bold cyan]")
        console.print(f"  {record.notes}")


@referral_app.command("invoice")
def invoice_referral(
    referral_id: str = typer.Argument(..., help="Referral ID to mark invoiced"),
):
    """Move a completed referral to invoiced."""
    try:
        record = _workflow().mark_invoiced(referral_id.upper())
    except NotFoundError:
        console.print(f"[red]Referral {referral_id} not found.[/red]")
        raise typer.Exit(1)
    except TransitionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except DownstreamError as e:
        console.print(f"[red]Update failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Referral {record.id} marked invoiced.[/green]")


# ============================================================================
# Diagnostics
# ============================================================================
@app.command("diagnose-workbook")
def diagnose_workbook():
    """Check that the SharePoint site, library, workbook, worksheet and table can be reached."""
    settings = get_settings()
    configure_logging(settings.log_level)
    graph = GraphService(settings)
    if not graph.is_configured():
        console.print("[red]Microsoft Graph API not configured.[/red]")
        raise typer.Exit(1)

    steps = graph.diagnose_workbook()

    table = Table(title="Workbook Diagnostics", box=box.ROUNDED)
    table.add_column("Step", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")
    for step in steps:
        result = "[green]OK[/green]" if step["success"] else "[red]FAILED[/red]"
        table.add_row(step["step"], result, step["detail"])
    console.print(table)

    if not all(step["success"] for step in steps):
        raise typer.Exit(1)
    console.print("[green]All workbook checks passed.[/green]")


# ============================================================================
# Server Commands
# ============================================================================
@app.command("serve")
def start_server(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
):
    """Start the FastAPI web server."""
    import uvicorn

    console.print(f"[blue]Starting server at http://{host}:{port}[/blue]")
    uvicorn.run(
        "referral_intake.api:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
