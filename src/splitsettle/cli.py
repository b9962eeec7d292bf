"""CLI for SplitSettle using Typer."""

import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from .allocator import TOLERANCE, allocate, build_split_configuration
from .balances import BalanceService
from .clients.rates import ExchangeRateClient
from .config import Settings, load_settings
from .currency import CurrencyConverter, CurrentRateCache
from .db import Database
from .expenses import ExpenseService
from .models import (
    ConversionMode,
    CreateExpenseInput,
    GroupBalanceSummary,
    PaymentShare,
    SplitMethod,
    SplitSelection,
)

app = typer.Typer(
    name="splitsettle",
    help="Group expense balances and settlement plans",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def build_converter(settings: Settings, db: Database) -> CurrencyConverter:
    """Wire a converter from settings."""
    client = ExchangeRateClient(
        base_url=settings.rates_api_url, timeout=settings.rates_api_timeout
    )
    return CurrencyConverter(
        database=db,
        client=client,
        cache=CurrentRateCache(ttl_seconds=settings.current_rate_ttl_seconds),
        max_workers=settings.rate_fetch_workers,
    )


def format_money(amount: Decimal, currency: str | None = None) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85.02)
    Positive amounts have spaces:      85.02
    """
    suffix = f" {currency}" if currency else ""
    if amount < 0:
        return f"([red]{abs(amount):,.2f}[/red]){suffix}"
    return f" [green]{amount:,.2f}[/green] {suffix}"


def display_summary(summary: GroupBalanceSummary):
    """Display balances and the settlement plan as tables."""
    currency = summary.display_currency

    console.print(f"\n[bold]Group {summary.group_id}[/bold]")
    console.print(f"  Total expenses: {format_money(summary.total_expenses, currency)}")
    if summary.conversion_mode:
        console.print(f"  Conversion: {summary.conversion_mode.value}")
    if summary.approximate_rates:
        console.print(
            "  [yellow]⚠️  Approximate: some amounts use a nearest cached rate"
            "[/yellow]"
        )
    console.print()

    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Owes", justify="right")
    table.add_column("Net", justify="right")
    for balance in summary.user_balances:
        table.add_row(
            str(balance.member_id),
            f"{balance.total_paid:,.2f}",
            f"{balance.total_owes:,.2f}",
            format_money(balance.net_balance),
        )
    console.print(table)

    if not summary.simplified_debts:
        console.print("\n[green]✓ Everyone is settled up[/green]")
        return

    debts = Table(title="Settlement Plan", show_header=True, header_style="bold magenta")
    debts.add_column("From", style="cyan")
    debts.add_column("To", style="cyan")
    debts.add_column("Amount", justify="right")
    for debt in summary.simplified_debts:
        debts.add_row(str(debt.from_member), str(debt.to_member), f"{debt.amount:,.2f}")
    console.print(debts)


@app.command()
def balances(
    group_id: int = typer.Argument(..., help="Group to summarize"),
    currency: str | None = typer.Option(
        None, "--currency", "-c", help="Display currency (defaults to settings)"
    ),
    mode: ConversionMode | None = typer.Option(
        None, "--mode", "-m", help="Conversion mode: off, simple or smart"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show member balances and who pays whom."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)

        conversion_mode = mode or ConversionMode(settings.conversion_mode)
        display_currency = (currency or settings.display_currency).upper()

        converter = build_converter(settings, db)
        service = BalanceService(
            db,
            converter=converter,
            allow_mixed_currencies=settings.allow_mixed_currencies,
        )
        with converter.client:
            summary = service.calculate_group_balances(
                group_id,
                display_currency=display_currency,
                conversion_mode=conversion_mode,
            )
        display_summary(summary)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def rate(
    base: str = typer.Argument(..., help="Source currency code"),
    target: str = typer.Argument(..., help="Target currency code"),
    on: str | None = typer.Option(
        None, "--date", "-d", help="Historical date (YYYY-MM-DD); current if omitted"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Look up an exchange rate (cached when possible)."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        converter = build_converter(settings, db)

        with converter.client:
            if on:
                resolved = converter.resolve_historical(
                    base.upper(), target.upper(), date.fromisoformat(on)
                )
            else:
                resolved = converter.resolve_current(base.upper(), target.upper())

        console.print(
            f"1 {base.upper()} = [bold]{resolved.rate}[/bold] {target.upper()} "
            f"[dim](rate date {resolved.rate_date})[/dim]"
        )
        if resolved.approximate:
            console.print("[yellow]⚠️  Approximate: nearest cached rate used[/yellow]")

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command(name="allocate")
def allocate_command(
    total: str = typer.Argument(..., help="Expense total"),
    method: SplitMethod = typer.Argument(..., help="equal, percentage, shares or exact"),
    members: list[str] = typer.Argument(
        ..., help="MEMBER_ID or MEMBER_ID:VALUE (percentage, share count or amount)"
    ),
):
    """Preview how an amount would be split among members."""
    try:
        amount = Decimal(total)
        selections = [_parse_selection(token, method) for token in members]
    except (InvalidOperation, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] invalid input: {e}")
        sys.exit(1)

    splits = allocate(amount, method, selections)

    table = Table(title=f"{method.value.capitalize()} split of {amount}")
    table.add_column("Member", style="cyan")
    table.add_column("Amount", justify="right")
    for split in splits:
        table.add_row(str(split.member_id), f"{split.amount:,.2f}")
    console.print(table)

    allocated = sum((s.amount for s in splits), Decimal(0))
    if abs(allocated - amount) < TOLERANCE:
        console.print("  [green]✓ Split matches total[/green]")
    else:
        console.print(f"  [red]✗ Split totals {allocated}, expected {amount}[/red]")


def _parse_selection(token: str, method: SplitMethod) -> SplitSelection:
    member, _, value = token.partition(":")
    selection = SplitSelection(member_id=int(member))
    if not value:
        return selection
    if method == SplitMethod.PERCENTAGE:
        selection.percentage = Decimal(value)
    elif method == SplitMethod.SHARES:
        selection.shares = int(value)
    elif method == SplitMethod.EXACT:
        selection.amount = Decimal(value)
    return selection


@app.command()
def add_member(
    group_id: int = typer.Argument(..., help="Group to join"),
    member_ids: list[int] = typer.Argument(..., help="Member ids to add"),
):
    """Add members to a group."""
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        for member_id in member_ids:
            db.add_group_member(group_id, member_id)
        members = db.list_group_members(group_id)
        console.print(
            f"[green]Group {group_id} members: "
            f"{', '.join(str(m) for m in members)}[/green]"
        )
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def add_expense(
    group_id: int = typer.Argument(..., help="Group the expense belongs to"),
    total: str = typer.Argument(..., help="Expense total"),
    paid_by: int = typer.Argument(..., help="Member who paid"),
    members: list[str] = typer.Argument(
        ..., help="MEMBER_ID or MEMBER_ID:VALUE (percentage, share count or amount)"
    ),
    method: SplitMethod = typer.Option(
        SplitMethod.EQUAL, "--method", "-m", help="equal, percentage, shares or exact"
    ),
    currency: str = typer.Option("USD", "--currency", "-c", help="Currency code"),
    on: str | None = typer.Option(
        None, "--date", "-d", help="Expense date (YYYY-MM-DD); today if omitted"
    ),
    description: str = typer.Option("", "--description", help="What it was for"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record an expense paid by one member and split among others."""
    setup_logging(verbose)

    try:
        amount = Decimal(total)
        config = build_split_configuration(
            amount,
            [PaymentShare(member_id=paid_by)],
            method,
            [_parse_selection(token, method) for token in members],
        )

        settings = load_settings()
        db = Database(settings.database_path)
        created = ExpenseService(db).create_expense(
            CreateExpenseInput(
                description=description,
                amount=amount,
                currency=currency.upper(),
                date=date.fromisoformat(on) if on else date.today(),
                group_id=group_id,
                created_by=paid_by,
                split_config=config,
            )
        )

        console.print(
            f"[green]✓ Recorded expense {created.id}: "
            f"{created.amount:,.2f} {created.currency}[/green]"
        )
        for split in config.splits:
            console.print(f"  Member {split.member_id}: {split.amount:,.2f}")

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def prune_rates(
    keep_days: int | None = typer.Option(
        None, "--keep-days", help="Keep rates newer than this (defaults to settings)"
    ),
):
    """Delete cached exchange rates older than the retention window."""
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        days = keep_days if keep_days is not None else settings.rate_retention_days
        removed = db.prune_rates(days)
        console.print(
            f"[green]Removed {removed} cached rates older than {days} days[/green]"
        )
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


if __name__ == "__main__":
    app()
