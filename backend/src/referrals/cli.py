"""Command-line interface for the referral engine."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from referrals.analytics import ReferralParticipationRole, analytics_service
from referrals.analytics.schemas import AnalyticsSearchFilter
from referrals.blocks import block_service
from referrals.blocks.schemas import BlockRequest, UnblockRequest
from referrals.exceptions import ReferralError
from referrals.links.usage_service import link_usage_service
from referrals.logging_config import configure_logging, get_logger
from referrals.lookups import block_reason_service, country_service
from referrals.programs import ProgramStatus, program_service
from referrals.programs.schemas import ProgramSearchFilter
from referrals.storage.db import db
from referrals.utils.date_utils import format_date

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="referrals",
    help="Referral rewards engine administration",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _fail(error: Exception) -> None:
    console.print(f"[bold red]✗[/bold red] {error}")
    raise typer.Exit(1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("seed")
def seed_lookups() -> None:
    """Load default countries and block reasons."""
    countries = country_service.seed()
    reasons = block_reason_service.seed()
    console.print(f"[bold green]✓[/bold green] Seeded {countries} countries and {reasons} block reasons")


@app.command("programs")
def list_programs(
    username: Annotated[str, typer.Option("--as", help="Acting username")],
    status: Annotated[list[ProgramStatus] | None, typer.Option("--status", "-s", help="Filter by status")] = None,
) -> None:
    """List programs visible to a user."""
    try:
        results = program_service.search(ProgramSearchFilter(statuses=status), username=username)
    except ReferralError as e:
        _fail(e)

    if not results.items:
        console.print("[yellow]No programs found[/yellow]")
        return

    table = Table(title="Referral Programs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Status")
    table.add_column("Default")
    table.add_column("Completions", justify="right")
    table.add_column("Start")
    table.add_column("End")

    for program in results.items:
        limit = program.completion_limit if program.completion_limit is not None else "∞"
        table.add_row(
            str(program.id),
            program.name,
            program.status.value,
            "yes" if program.is_default else "",
            f"{program.completion_total or 0}/{limit}",
            format_date(program.date_start),
            format_date(program.date_end),
        )

    console.print(table)


@app.command("program-status")
def update_program_status(
    program_id: Annotated[int, typer.Argument(help="Program ID")],
    status: Annotated[ProgramStatus, typer.Argument(help="New status")],
    username: Annotated[str, typer.Option("--as", help="Acting administrator")],
) -> None:
    """Transition a program to a new status."""
    try:
        program = program_service.update_status(program_id, status, username)
    except ReferralError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Program [bold]{program.name}[/bold] is now {program.status.value}"
    )


@app.command("program-default")
def set_default_program(
    program_id: Annotated[int, typer.Argument(help="Program ID")],
    username: Annotated[str, typer.Option("--as", help="Acting administrator")],
) -> None:
    """Make a program the default."""
    try:
        program = program_service.set_as_default(program_id, username)
    except ReferralError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Program [bold]{program.name}[/bold] is now the default")


@app.command("block")
def block_user(
    user_id: Annotated[int, typer.Argument(help="User ID to block")],
    reason_id: Annotated[int, typer.Option("--reason", "-r", help="Block reason ID")],
    username: Annotated[str, typer.Option("--as", help="Acting administrator")],
    comment: Annotated[str | None, typer.Option("--comment", "-c", help="Comment")] = None,
    cancel_links: Annotated[bool, typer.Option("--cancel-links", help="Cancel the user's active links")] = False,
) -> None:
    """Block a user from referral participation."""
    request = BlockRequest(user_id=user_id, reason_id=reason_id, comment=comment, cancel_links=cancel_links)
    try:
        block = block_service.block(request, username)
    except ReferralError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] User {user_id} blocked (block ID: {block.id})")


@app.command("unblock")
def unblock_user(
    user_id: Annotated[int, typer.Argument(help="User ID to unblock")],
    username: Annotated[str, typer.Option("--as", help="Acting administrator")],
    comment: Annotated[str | None, typer.Option("--comment", "-c", help="Comment")] = None,
) -> None:
    """Lift a user's referral block."""
    try:
        block = block_service.unblock(UnblockRequest(user_id=user_id, comment=comment), username)
    except ReferralError as e:
        _fail(e)

    if block is None:
        console.print(f"[yellow]User {user_id} was not blocked[/yellow]")
        return
    console.print(f"[bold green]✓[/bold green] User {user_id} unblocked")


@app.command("usage-complete")
def complete_usage(
    usage_id: Annotated[int, typer.Argument(help="Link usage ID")],
) -> None:
    """Complete a pending claim once the referee met the program criteria."""
    try:
        usage = link_usage_service.process_completion(usage_id)
    except ReferralError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Usage {usage.id} completed")
    console.print(f"  Referee reward: {usage.zlto_reward_referee or 0}")
    console.print(f"  Referrer reward: {usage.zlto_reward_referrer or 0}")


@app.command("expire")
def expire() -> None:
    """Expire ended programs and claims past their completion window."""
    program_ids = program_service.process_expiration()
    usages = link_usage_service.process_expiration()

    console.print(f"[bold green]✓[/bold green] Expired {len(program_ids)} programs and {usages} claims")


@app.command("delete-stale")
def delete_stale(
    retention_days: Annotated[
        int | None,
        typer.Option("--retention-days", "-d", help="Days untouched before deletion (defaults to settings)"),
    ] = None,
) -> None:
    """Soft-delete expired or capped programs nobody has touched for a while."""
    try:
        program_ids = program_service.process_deletion(retention_days)
    except ValueError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Deleted {len(program_ids)} stale programs")


@app.command("leaderboard")
def show_leaderboard(
    program_id: Annotated[int | None, typer.Option("--program", "-p", help="Program ID")] = None,
    role: Annotated[ReferralParticipationRole, typer.Option("--role", help="Referrer or referee")] = ReferralParticipationRole.REFERRER,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of rows")] = 10,
    redact: Annotated[bool, typer.Option("--redact/--no-redact", help="Redact display names")] = True,
) -> None:
    """Show the referral leaderboard."""
    filter = AnalyticsSearchFilter(role=role, program_id=program_id, page_number=1, page_size=limit)
    results = analytics_service.leaderboard(filter) if redact else analytics_service.search(filter)

    if not results.items:
        console.print("[yellow]No referral activity yet[/yellow]")
        return

    table = Table(title=f"Leaderboard ({role.value}s)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("User", style="green")
    table.add_column("Completed", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Expired", justify="right")
    table.add_column("Reward", justify="right")

    for rank, item in enumerate(results.items, start=1):
        table.add_row(
            str(rank),
            item.display_name,
            str(item.usage_count_completed),
            str(item.usage_count_pending),
            str(item.usage_count_expired),
            f"{item.zlto_reward_total:g}",
        )

    console.print(table)
    console.print(f"Showing {len(results.items)} of {results.total_count}")


if __name__ == "__main__":
    app()
