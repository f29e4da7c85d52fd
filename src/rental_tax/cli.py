"""CLI for RentalTax using Typer."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from .aggregator import format_currency, parse_amount
from .clients.google_identity import GoogleIdentityProvider
from .clients.sheets import SheetsClient
from .config import Settings, load_settings
from .db import Database
from .exceptions import (
    AuthError,
    AuthExpiredError,
    ConfigurationError,
    ValidationError,
)
from .models import EXPENSE_CATEGORIES, MonthlyTaxSummary, SyncPhase, TaxBreakdown
from .session import AuthSession
from .sync import SyncCoordinator
from .taxes import get_calculator

T = TypeVar("T")

app = typer.Typer(
    name="rental-tax",
    help="Monthly rental income tax, kept in your own Google spreadsheet",
)

console = Console()

VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (R$ 85,02)
    Positive amounts have spaces:      R$ 85,02
    The spaces ensure decimal points align in tables.
    """
    formatted = format_currency(abs(amount))
    if amount < 0:
        if use_color:
            return f"(R$ [red]{formatted}[/red])"
        return f"(R$ {formatted})"
    if use_color:
        return f" [green]R$ {formatted}[/green] "
    return f" R$ {formatted} "


def format_rate(rate: Decimal) -> str:
    return f"{rate * 100:.1f}%"


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD argument."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date {value!r} (expected YYYY-MM-DD)") from None


# ============================================================================
# Coordinator plumbing
# ============================================================================


def build_coordinator(settings: Settings, db: Database) -> SyncCoordinator:
    """Wire the coordinator to Google and the local database."""
    session = AuthSession(db, persist=settings.persist_session)
    if settings.spreadsheet_id and not session.spreadsheet_id:
        session.spreadsheet_id = settings.spreadsheet_id

    return SyncCoordinator(
        identity=GoogleIdentityProvider(
            settings.google_client_id, settings.google_client_secret
        ),
        store_factory=lambda token, spreadsheet_id: SheetsClient(token, spreadsheet_id),
        session=session,
        calculator=get_calculator(settings.jurisdiction),
        autosave_delay=settings.autosave_delay,
        on_session_expired=lambda: console.print(
            "[yellow]Your session has expired. "
            "Run [cyan]rental-tax login[/cyan] to sign in again.[/yellow]"
        ),
    )


def require_ready(coordinator: SyncCoordinator):
    """Fail with a hint unless the spreadsheet is loaded."""
    if coordinator.state.phase is SyncPhase.READY:
        return
    if coordinator.state.session_expired:
        raise AuthExpiredError("Session expired. Run 'rental-tax login' again.")
    if coordinator.session.token is None:
        raise AuthError("Not signed in. Run 'rental-tax login' first.")
    raise ConfigurationError(
        "No spreadsheet connected. Run 'rental-tax connect <url>' first."
    )


async def _session_run(
    action: Callable[[SyncCoordinator], Awaitable[T]],
    restore: bool = True,
    ready: bool = True,
) -> T:
    settings = load_settings()
    with Database(settings.database_path) as db:
        coordinator = build_coordinator(settings, db)
        try:
            if restore:
                await coordinator.restore()
            if ready:
                require_ready(coordinator)
            result = await action(coordinator)
            await coordinator.flush()
            return result
        finally:
            await coordinator.close()


def run_command(
    action: Callable[[SyncCoordinator], Awaitable[T]],
    verbose: bool,
    restore: bool = True,
    ready: bool = True,
) -> T:
    """Run an action against a restored coordinator, reporting errors."""
    setup_logging(verbose)
    try:
        return asyncio.run(_session_run(action, restore=restore, ready=ready))
    except ValidationError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)


# ============================================================================
# Display
# ============================================================================


def display_breakdown(liquid_income: Decimal, breakdown: TaxBreakdown):
    """Display a tax calculation."""
    console.print("\n[bold]Tax calculation:[/bold]")
    console.print(f"  Liquid income:  {format_money(liquid_income)}")
    console.print(f"  Deduction:      {format_money(breakdown.deduction)}")
    console.print(f"  Taxable income: {format_money(breakdown.taxable_income)}")
    console.print(f"  Rate:           {format_rate(breakdown.tax_rate)}")
    console.print(f"  Tax owed:       {format_money(breakdown.tax_owed)}")


def display_summaries(summaries: list[MonthlyTaxSummary]):
    """Display monthly summaries in a table."""
    table = Table(title="Monthly Taxes", show_header=True, header_style="bold magenta")
    table.add_column("Month", style="cyan", width=8)
    table.add_column("Income", justify="right")
    table.add_column("Expenses", justify="right")
    table.add_column("Rate", justify="right", style="dim")
    table.add_column("Tax", justify="right")
    table.add_column("Profit", justify="right")
    table.add_column("Paid", justify="center")

    for s in summaries:
        table.add_row(
            s.month,
            format_money(s.total_income),
            format_money(s.total_deductions),
            format_rate(s.tax_rate),
            format_money(s.tax_owed),
            format_money(s.profit),
            "[green]✓[/green]" if s.is_paid else "[dim]—[/dim]",
        )

    console.print(table)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def calc(
    liquid_income: str = typer.Argument(..., help="Monthly income after expenses"),
    dependents: int = typer.Option(0, "--dependents", "-d", min=0),
    verbose: bool = VerboseOption,
):
    """Calculate the tax on a liquid income without touching any spreadsheet."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        calculator = get_calculator(settings.jurisdiction)
        amount = parse_amount(liquid_income, "liquid income")
        display_breakdown(amount, calculator.calculate_tax(amount, dependents))
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)


@app.command()
def login(verbose: bool = VerboseOption):
    """Sign in with Google and load the connected spreadsheet."""

    async def action(coordinator: SyncCoordinator):
        console.print("\n[bold blue]Opening the browser to sign in...[/bold blue]")
        await coordinator.sign_in()
        console.print(
            f"[bold green]✓ Signed in as {coordinator.session.email or 'unknown user'}"
            f"[/bold green]"
        )
        if coordinator.state.phase is SyncPhase.READY:
            console.print(f"[green]Loaded {len(coordinator.months())} months[/green]")
        else:
            console.print(
                "\n[bold]Connect a spreadsheet next:[/bold]\n"
                "  [cyan]rental-tax connect <spreadsheet url>[/cyan]\n"
            )

    run_command(action, verbose, restore=False, ready=False)


@app.command()
def logout(verbose: bool = VerboseOption):
    """Forget the saved session."""

    async def action(coordinator: SyncCoordinator):
        coordinator.sign_out()
        console.print("[green]Signed out.[/green]")

    run_command(action, verbose, restore=False, ready=False)


@app.command()
def connect(
    url_or_id: str = typer.Argument(..., help="Spreadsheet URL or id"),
    verbose: bool = VerboseOption,
):
    """Connect a spreadsheet, creating any missing sheets."""

    async def action(coordinator: SyncCoordinator):
        spreadsheet_id = await coordinator.connect_spreadsheet(url_or_id)
        console.print(f"[bold green]✓ Connected spreadsheet {spreadsheet_id}[/bold green]")

    run_command(action, verbose, ready=False)


@app.command()
def months(verbose: bool = VerboseOption):
    """List the tax summary of every month with data."""

    async def action(coordinator: SyncCoordinator):
        summaries = coordinator.summaries()
        if not summaries:
            console.print("[yellow]No reservations or expenses yet.[/yellow]")
            return
        display_summaries(summaries)

        unpaid = coordinator.most_recent_unpaid_month()
        if unpaid:
            console.print(
                f"\n[bold yellow]⚠️  Tax for {unpaid} is not marked as paid[/bold yellow]"
            )

    run_command(action, verbose)


@app.command()
def month(
    key: str = typer.Argument(..., metavar="YYYY-MM"),
    verbose: bool = VerboseOption,
):
    """Show one month in detail, with the text for the tax filing form."""

    async def action(coordinator: SyncCoordinator):
        summary = coordinator.summary(key)
        console.print(f"\n[bold]{summary.month}[/bold]")
        console.print(f"  Income:    {format_money(summary.total_income)}")
        console.print(f"  Expenses:  {format_money(summary.total_deductions)}")
        display_breakdown(
            summary.liquid_income,
            TaxBreakdown(
                deduction=summary.deduction,
                taxable_income=summary.taxable_income,
                tax_rate=summary.tax_rate,
                tax_owed=summary.tax_owed,
            ),
        )
        console.print(f"  Profit:         {format_money(summary.profit)}")
        console.print(f"  Occupancy:      {coordinator.occupancy_rate(key)}%")
        console.print(f"  Paid:           {'yes' if summary.is_paid else 'no'}")

        filing = coordinator.filing_text(key)
        if filing:
            console.print("\n[bold]Reservations:[/bold]")
            console.print(filing, markup=False)

    run_command(action, verbose)


@app.command()
def yoy(verbose: bool = VerboseOption):
    """Compare accumulated profit month by month across years."""

    async def action(coordinator: SyncCoordinator):
        points = coordinator.year_over_year()
        if not points:
            console.print("[yellow]No data yet.[/yellow]")
            return

        years = sorted(points[0].accumulated)
        table = Table(
            title="Accumulated Profit", show_header=True, header_style="bold magenta"
        )
        table.add_column("Month", style="cyan")
        for year in years:
            table.add_column(str(year), justify="right")
        for point in points:
            table.add_row(
                point.month_name,
                *(format_money(point.accumulated[year]) for year in years),
            )
        console.print(table)

    run_command(action, verbose)


@app.command()
def pay(
    key: str = typer.Argument(..., metavar="YYYY-MM"),
    verbose: bool = VerboseOption,
):
    """Mark a month's tax as paid."""

    async def action(coordinator: SyncCoordinator):
        if coordinator.mark_paid(key):
            console.print(f"[green]✓ {key} marked as paid[/green]")
        else:
            console.print(f"[dim]{key} was already paid[/dim]")

    run_command(action, verbose)


@app.command()
def unpay(
    key: str = typer.Argument(..., metavar="YYYY-MM"),
    verbose: bool = VerboseOption,
):
    """Mark a month's tax as not paid."""

    async def action(coordinator: SyncCoordinator):
        if coordinator.mark_unpaid(key):
            console.print(f"[green]✓ {key} marked as unpaid[/green]")
        else:
            console.print(f"[dim]{key} was not paid[/dim]")

    run_command(action, verbose)


@app.command("add-reservation")
def add_reservation(
    check_in: str = typer.Argument(..., metavar="DATE", help="Check-in, YYYY-MM-DD"),
    nights: int = typer.Argument(...),
    total: str = typer.Argument(..., help="Amount paid by the guest"),
    verbose: bool = VerboseOption,
):
    """Add a reservation, split with the current settings."""

    async def action(coordinator: SyncCoordinator):
        reservation = coordinator.add_reservation(parse_date(check_in), nights, total)
        console.print(
            f"[green]✓ Added reservation on {reservation.date}: "
            f"owner {format_money(reservation.owner_amount, use_color=False).strip()}, "
            f"admin {format_money(reservation.admin_fee, use_color=False).strip()}"
            f"[/green]"
        )

    run_command(action, verbose)


@app.command("add-expense")
def add_expense(
    expense_date: str = typer.Argument(..., metavar="DATE", help="YYYY-MM-DD"),
    amount: str = typer.Argument(...),
    category: str | None = typer.Option(
        None, "--category", "-c", help=f"One of: {', '.join(EXPENSE_CATEGORIES)}"
    ),
    notes: str | None = typer.Option(None, "--notes", "-n"),
    verbose: bool = VerboseOption,
):
    """Add a deductible expense."""

    async def action(coordinator: SyncCoordinator):
        if category is not None and category not in EXPENSE_CATEGORIES:
            raise ValidationError(
                f"Unknown category {category!r}. Use one of: "
                f"{', '.join(EXPENSE_CATEGORIES)}"
            )
        expense = coordinator.add_expense(
            parse_date(expense_date), amount, category, notes
        )
        console.print(
            f"[green]✓ Added expense on {expense.date}: "
            f"{format_money(expense.amount, use_color=False).strip()}[/green]"
        )

    run_command(action, verbose)


@app.command("set-dependents")
def set_dependents(
    dependents: int = typer.Argument(...),
    verbose: bool = VerboseOption,
):
    """Set the number of dependents used for the tax deduction."""

    async def action(coordinator: SyncCoordinator):
        settings = coordinator.update_settings(dependents=dependents)
        console.print(f"[green]✓ Dependents set to {settings.dependents}[/green]")

    run_command(action, verbose)


if __name__ == "__main__":
    app()
