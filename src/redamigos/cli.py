"""Command-line interface for Red de Amigos."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from redamigos.activity.recorder import activity_recorder
from redamigos.auth.identity import identity_service, synthesize_email
from redamigos.auth.models import RegisterRequest
from redamigos.auth.registration import registration_workflow
from redamigos.auth.session import SessionState
from redamigos.errors import CampaignError
from redamigos.logging_config import configure_logging, get_logger
from redamigos.network.aggregator import network_aggregator
from redamigos.referral.codes import referral_code_service
from redamigos.referral.qr import make_qr_png
from redamigos.referral.service import referral_service
from redamigos.settings import settings
from redamigos.storage.db import db
from redamigos.storage.export import export_to_csv, export_to_jsonl
from redamigos.storage.models import UserRole
from redamigos.storage.schemas import UserProfile
from redamigos.validators import normalize_identification

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="redamigos",
    help="Red de Amigos - referral network tracking for campaign volunteers",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _fail(message: str) -> None:
    console.print(f"[bold red]✗[/bold red] {message}")
    raise typer.Exit(1)


def _session_state() -> SessionState:
    return SessionState().init()


def _current_user() -> UserProfile:
    state = _session_state()
    state.close()
    if not state.is_authenticated:
        _fail("Not signed in. Run 'redamigos login' first.")
    return state.profile


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


def _register(body: RegisterRequest, role: UserRole) -> UserProfile:
    state = _session_state()
    try:
        result = registration_workflow.register(body, role=role)
    except CampaignError as e:
        _fail(e.message)
    finally:
        state.close()

    if not result.success:
        _fail(f"{result.message} ({result.state.value})")
    return result.user


@app.command("create-admin")
def create_admin(
    identification: Annotated[str, typer.Option("--id", "-i", help="National identification")],
    first_name: Annotated[str, typer.Option("--first-name", help="First name")],
    last_name: Annotated[str, typer.Option("--last-name", help="Last name")],
    municipality: Annotated[str | None, typer.Option("--municipality", "-m", help="Municipality")] = None,
) -> None:
    """Create an administrator account (no referrer)."""
    user = _register(
        RegisterRequest(
            identification=identification,
            first_name=first_name,
            last_name=last_name,
            municipality=municipality,
            terms_accepted=True,
            privacy_accepted=True,
        ),
        role=UserRole.ADMIN,
    )
    console.print(f"[bold green]✓[/bold green] Admin created: [bold]{user.full_name}[/bold]")
    console.print(f"  Referral code: {user.referral_code}")


@app.command("register")
def register(
    identification: Annotated[str, typer.Option("--id", "-i", help="National identification")],
    first_name: Annotated[str, typer.Option("--first-name", help="First name")],
    last_name: Annotated[str, typer.Option("--last-name", help="Last name")],
    municipality: Annotated[str | None, typer.Option("--municipality", "-m", help="Municipality")] = None,
    phone: Annotated[str | None, typer.Option("--phone", "-p", help="Phone number")] = None,
    code: Annotated[str | None, typer.Option("--code", "-c", help="Referral code of the person who invited you")] = None,
    accept: Annotated[bool, typer.Option("--accept-terms", help="Accept terms and privacy policy")] = False,
) -> None:
    """Register and sign in."""
    user = _register(
        RegisterRequest(
            identification=identification,
            first_name=first_name,
            last_name=last_name,
            municipality=municipality,
            phone=phone,
            referral_code=code,
            terms_accepted=accept,
            privacy_accepted=accept,
        ),
        role=UserRole.VOLUNTEER,
    )
    console.print(f"[bold green]✓[/bold green] Welcome, [bold]{user.full_name}[/bold]")
    console.print(f"  Your referral code: {user.referral_code}")
    console.print(f"  Share link: {referral_code_service.share_link(user.referral_code)}")


@app.command("login")
def login(
    identification: Annotated[str, typer.Option("--id", "-i", help="National identification")],
    password: Annotated[str, typer.Option("--password", prompt=True, hide_input=True)],
) -> None:
    """Sign in and remember the session."""
    state = _session_state()
    try:
        identity_service.sign_in(synthesize_email(normalize_identification(identification)), password)
    except CampaignError as e:
        _fail(e.message)
    finally:
        state.close()

    if not state.is_authenticated:
        state.teardown()
        _fail("This identification has no profile yet")
    console.print(f"[bold green]✓[/bold green] Signed in as [bold]{state.profile.full_name}[/bold]")


@app.command("logout")
def logout() -> None:
    """Sign out and forget the session."""
    state = _session_state()
    identity_service.sign_out(state.session)
    state.close()
    console.print("[bold green]✓[/bold green] Signed out")


@app.command("whoami")
def whoami() -> None:
    """Show the signed-in profile."""
    user = _current_user()
    console.print(f"[bold]Name:[/bold] {user.full_name}")
    console.print(f"[bold]Identification:[/bold] {user.identification}")
    console.print(f"[bold]Role:[/bold] {user.role.value}")
    console.print(f"[bold]Referral code:[/bold] {user.referral_code}")
    console.print(f"[bold]Municipality:[/bold] {user.municipality or 'N/A'}")


@app.command("network")
def show_network(
    root_id: Annotated[str | None, typer.Option("--root", help="Root user ID (admins only)")] = None,
) -> None:
    """Show the referral tree below you."""
    user = _current_user()
    root_id = root_id or user.id
    if root_id != user.id and user.role != UserRole.ADMIN:
        _fail("You can only view your own network")

    try:
        result = network_aggregator.get_network(root_id)
    except CampaignError as e:
        _fail(e.message)

    if result.degraded:
        console.print("[yellow]Showing direct referrals only (network query unavailable)[/yellow]")
    if not result.nodes:
        console.print("[yellow]No referrals yet[/yellow]")
        return

    table = Table(title=f"Network ({len(result.nodes)} people)")
    table.add_column("Level", justify="right", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Referrals", justify="right")
    table.add_column("Joined")

    for node in result.nodes:
        name = f"{node.name} [red](cycle)[/red]" if node.cycle_detected else node.name
        table.add_row(
            str(node.level),
            name,
            str(node.children_count),
            node.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@app.command("ranking")
def show_ranking(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of entries")] = settings.ranking_default_limit,
) -> None:
    """Show the referral ranking."""
    try:
        result = network_aggregator.get_ranking(limit=limit)
    except CampaignError as e:
        _fail(e.message)

    if result.degraded:
        console.print("[yellow]Ranking unavailable, showing users without counts[/yellow]")

    table = Table(title="Ranking")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Code")
    table.add_column("Municipality")
    table.add_column("Referrals", justify="right")
    table.add_column("Network", justify="right")

    for entry in result.entries:
        table.add_row(
            str(entry.rank),
            entry.name,
            entry.referral_code,
            entry.municipality or "N/A",
            str(entry.total_referrals),
            str(entry.network_size),
        )

    console.print(table)


@app.command("stats")
def show_stats() -> None:
    """Show your dashboard numbers."""
    user = _current_user()
    try:
        stats = network_aggregator.get_stats(user.id)
    except CampaignError as e:
        _fail(e.message)

    console.print(f"[bold]Total users:[/bold] {stats.total_users}")
    console.print(f"[bold]Your referrals:[/bold] {stats.total_referrals}")
    console.print(f"[bold]Your network:[/bold] {stats.total_network}")
    console.print(f"[bold]New this month:[/bold] {stats.new_this_month}")
    console.print(f"[bold]Your rank:[/bold] {stats.user_rank if stats.user_rank is not None else 'N/A'}")


@app.command("activity")
def show_activity(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of entries")] = settings.activity_default_limit,
) -> None:
    """Show your recent activity."""
    user = _current_user()
    items = activity_recorder.list_activity(user.id, limit=limit)

    if not items:
        console.print("[yellow]No activity yet[/yellow]")
        return

    table = Table(title="Activity")
    table.add_column("When")
    table.add_column("Action", style="cyan")
    table.add_column("Description", style="green")

    for item in items:
        table.add_row(
            item.created_at.strftime("%Y-%m-%d %H:%M"),
            item.action,
            item.description or "",
        )

    console.print(table)


@app.command("export")
def export_referrals(
    output_path: Annotated[Path, typer.Option("--output", "-o", help="Output file path")] = Path("referrals.csv"),
    format: Annotated[str, typer.Option("--format", "-f", help="Export format (csv or jsonl)")] = "csv",
) -> None:
    """Export your referrals to CSV or JSONL."""
    user = _current_user()
    if format not in ("csv", "jsonl"):
        _fail(f"Unknown format: {format}")

    console.print(f"[bold blue]Exporting referrals to {output_path}...[/bold blue]")
    referrals, _ = referral_service.list_referrals(user.id)
    if format == "csv":
        count = export_to_csv(referrals, output_path)
    else:
        count = export_to_jsonl(referrals, output_path)

    console.print(f"[bold green]✓[/bold green] Exported {count} referrals to {output_path}")


@app.command("qr")
def write_qr(
    output_path: Annotated[Path, typer.Option("--output", "-o", help="Output PNG path")] = Path("referral_qr.png"),
) -> None:
    """Save a QR code of your share link."""
    user = _current_user()
    link = referral_code_service.share_link(user.referral_code)
    output_path.write_bytes(make_qr_png(link))
    console.print(f"[bold green]✓[/bold green] QR for {link} saved to {output_path}")


@app.command("orphans")
def show_orphans(
    delete: Annotated[bool, typer.Option("--delete", help="Delete the listed identities")] = False,
) -> None:
    """List identities whose profile was never created."""
    orphans = identity_service.find_orphaned_identities()
    if not orphans:
        console.print("[green]No orphaned identities[/green]")
        return

    table = Table(title="Orphaned identities")
    table.add_column("Identity ID", style="cyan")
    table.add_column("Identification", style="green")
    table.add_column("Created At")

    for orphan in orphans:
        table.add_row(
            orphan["identity_id"],
            orphan["identification"],
            orphan["created_at"].strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)

    if not delete:
        return

    for orphan in orphans:
        try:
            identity_service.delete_identity(orphan["identity_id"])
        except CampaignError as e:
            console.print(f"[yellow]Skipped {orphan['identity_id']}: {e.message}[/yellow]")
    console.print(f"[bold green]✓[/bold green] Reconciled {len(orphans)} identities")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port")] = 8000,
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("redamigos.api.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
