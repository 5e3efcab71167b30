"""CLI for Monee Split using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .db import Database
from .exceptions import AuthorizationError, MoneeSplitError, NotFoundError, ValidationError
from .models import (
    Expense,
    GroupBalances,
    SettlementState,
    SplitMode,
    SplitRequest,
)
from .service import LedgerService
from .ui import prompt_split_values, select_category_interactive

app = typer.Typer(
    name="monee-split",
    help="Track shared expenses across currencies and see who owes whom",
)

console = Console()

AS_USER = typer.Option(..., "--as", help="Acting user id")
VERBOSE = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[LedgerService]:
    """Load settings, open the database and report errors uniformly."""
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield LedgerService(settings, db)
    except AuthorizationError as e:
        console.print(f"\n[bold red]Not allowed:[/bold red] {e}")
        sys.exit(1)
    except NotFoundError as e:
        console.print(f"\n[bold yellow]Not found:[/bold yellow] {e}")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]")
        sys.exit(1)
    except MoneeSplitError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def format_money(amount: Decimal, currency: str = "", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85.02)
    Positive amounts have spaces:      85.02
    """
    abs_amount = abs(amount)
    suffix = f" {currency}" if currency else ""
    if amount < 0:
        if use_color:
            return f"([red]{abs_amount:,.2f}[/red]){suffix}"
        return f"({abs_amount:,.2f}){suffix}"
    if use_color:
        return f" [green]{abs_amount:,.2f}[/green]{suffix} "
    return f" {abs_amount:,.2f}{suffix} "


def parse_share_options(values: list[str]) -> dict[int, Decimal]:
    """Parse repeated --share MEMBER_ID=VALUE options."""
    shares: dict[int, Decimal] = {}
    for value in values:
        member, sep, amount = value.partition("=")
        try:
            if not sep:
                raise ValueError
            parsed = Decimal(amount.strip().rstrip("%"))
            if not parsed.is_finite():
                raise ValueError
            shares[int(member.strip())] = parsed
        except (ValueError, InvalidOperation) as e:
            raise typer.BadParameter(
                f"Expected MEMBER_ID=VALUE, got '{value}'", param_hint="--share"
            ) from e
    return shares


def build_expense_input(
    service: LedgerService,
    user_id: int,
    group_id: int | None,
    title: str,
    amount: str,
    currency: str | None,
    fx: str,
    expense_date: str | None,
    note: str | None,
    category: int | None,
    split: SplitMode,
    share: list[str],
    interactive: bool,
) -> dict:
    """Turn CLI options into a raw expense dict (validated by the service)."""
    values = parse_share_options(share)

    if interactive and group_id is not None and split != SplitMode.EQUAL:
        group = service.get_group(user_id, group_id)
        members = service.members.list_members(group_id)
        values = prompt_split_values(members, split, group.base_currency)
    if interactive and category is None:
        category = select_category_interactive(service.db.list_categories(user_id))

    split_request = SplitRequest(
        split_mode=split,
        percent_by_member=values if split == SplitMode.PERCENT else {},
        manual_by_member=values if split == SplitMode.MANUAL else {},
    )
    raw = {
        "title": title,
        "amount": amount,
        "currency": currency,
        "fx_to_base": fx,
        "note": note,
        "category_id": category,
        "split": split_request,
    }
    if expense_date:
        raw["expense_date"] = expense_date
    return raw


def display_expenses(expenses: list[Expense], title: str = "Expenses"):
    """Display expenses in a table."""
    if not expenses:
        console.print("[yellow]No expenses yet.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=6)
    table.add_column("Date", width=10)
    table.add_column("Title", style="cyan", width=30)
    table.add_column("Amount", justify="right", width=16)
    table.add_column("In base", justify="right", width=12)
    table.add_column("Payer", justify="right", width=6)
    table.add_column("Split", width=8)
    table.add_column("Category", style="yellow")

    for expense in expenses:
        table.add_row(
            str(expense.id),
            expense.expense_date.isoformat(),
            expense.title[:30],
            f"{expense.amount:,.2f} {expense.currency}",
            f"{expense.amount_in_base:,.2f}",
            str(expense.payer_id),
            expense.split_mode.value if expense.group_id else "-",
            expense.category_name_snapshot or "[dim]Uncategorized[/dim]",
        )

    console.print(table)


def display_balances(balances: GroupBalances):
    """Display a group's balances with settlement status."""
    currency = balances.base_currency or ""

    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Owed", justify="right")
    table.add_column("Net", justify="right")
    table.add_column("Status")

    for row in balances.balances:
        settlement = row.settlement
        if settlement.state == SettlementState.SETTLED:
            status = "[dim]settled[/dim]"
        elif settlement.state == SettlementState.SHOULD_RECEIVE:
            status = f"[green]should receive {settlement.amount:,.2f}[/green]"
        else:
            status = f"[red]owes {settlement.amount:,.2f}[/red]"

        table.add_row(
            row.display_name,
            f"{row.paid:,.2f}",
            f"{row.owed:,.2f}",
            format_money(row.net),
            status,
        )

    console.print(table)
    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(
        f"  Total spent: {format_money(balances.total_group_amount, currency)}"
    )
    console.print(
        f"  Fair share per person: "
        f"{format_money(balances.fair_share_per_person, currency)}"
    )

    if abs(balances.net_total) < Decimal("0.005"):
        console.print("  [green]✓ Balances add up to zero[/green]")
    else:
        console.print(f"  [red]✗ Balances are off by {balances.net_total}[/red]")


@app.command("user-add")
def user_add(
    email: str = typer.Argument(..., help="User email"),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    currency: str | None = typer.Option(None, "--currency", help="Base currency"),
    verbose: bool = VERBOSE,
):
    """Register a user (returns the existing one if the email is known)."""
    with open_service(verbose) as service:
        user = service.register_user(email, name=name, base_currency=currency)
        console.print(
            f"[green]✓ User {user.display_name} (id {user.id}, {user.base_currency})[/green]"
        )


@app.command("category-add")
def category_add(
    name: str = typer.Argument(..., help="Category name"),
    user_id: int = AS_USER,
    color: str | None = typer.Option(None, "--color", help="Display color"),
    verbose: bool = VERBOSE,
):
    """Create a spending category."""
    with open_service(verbose) as service:
        category = service.add_category(user_id, name, color)
        console.print(f"[green]✓ Category '{category.name}' (id {category.id})[/green]")


@app.command("category-rename")
def category_rename(
    category_id: int = typer.Argument(..., help="Category id"),
    name: str = typer.Argument(..., help="New name"),
    user_id: int = AS_USER,
    verbose: bool = VERBOSE,
):
    """Rename one of your categories (existing expenses keep the old name)."""
    with open_service(verbose) as service:
        category = service.rename_category(user_id, category_id, name)
        console.print(f"[green]✓ Category renamed to '{category.name}'[/green]")


@app.command("group-create")
def group_create(
    name: str = typer.Argument(..., help="Group name"),
    user_id: int = AS_USER,
    currency: str | None = typer.Option(None, "--currency", help="Base currency"),
    verbose: bool = VERBOSE,
):
    """Create a group with yourself as admin."""
    with open_service(verbose) as service:
        group = service.create_group(user_id, name, base_currency=currency)
        console.print(
            f"[green]✓ Group '{group.name}' (id {group.id}, {group.base_currency})[/green]"
        )


@app.command("groups")
def groups(user_id: int = AS_USER, verbose: bool = VERBOSE):
    """List your groups."""
    with open_service(verbose) as service:
        table = Table(title="Groups", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Slug")
        table.add_column("Currency")
        for group in service.list_groups(user_id):
            table.add_row(str(group.id), group.name, group.slug, group.base_currency)
        console.print(table)


@app.command("group-rename")
def group_rename(
    group_id: int = typer.Argument(..., help="Group id"),
    name: str = typer.Argument(..., help="New name"),
    user_id: int = AS_USER,
    verbose: bool = VERBOSE,
):
    """Rename a group (admins only)."""
    with open_service(verbose) as service:
        group = service.rename_group(user_id, group_id, name)
        console.print(f"[green]✓ Group renamed to '{group.name}'[/green]")


@app.command("member-add")
def member_add(
    group_id: int = typer.Argument(..., help="Group id"),
    email: str = typer.Argument(..., help="Email of an existing user"),
    user_id: int = AS_USER,
    verbose: bool = VERBOSE,
):
    """Add an existing user to a group (admins only)."""
    with open_service(verbose) as service:
        _, created = service.add_member(user_id, group_id, email)
        if created:
            console.print(f"[green]✓ Added {email}[/green]")
        else:
            console.print(f"[yellow]{email} is already a member[/yellow]")


@app.command("expense-add")
def expense_add(
    group_id: int = typer.Argument(..., help="Group id"),
    title: str = typer.Argument(..., help="What was paid for"),
    amount: str = typer.Argument(..., help="Amount in the spending currency"),
    user_id: int = AS_USER,
    currency: str | None = typer.Option(None, "--currency", help="Spending currency"),
    fx: str = typer.Option("1", "--fx", help="1 unit of currency in the group's base"),
    expense_date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD"),
    note: str | None = typer.Option(None, "--note"),
    category: int | None = typer.Option(None, "--category", help="Category id"),
    split: SplitMode = typer.Option(SplitMode.EQUAL, "--split", case_sensitive=False),
    share: list[str] = typer.Option(
        [], "--share", help="MEMBER_ID=VALUE (percent or amount), repeatable"
    ),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Prompt for split values and category"
    ),
    verbose: bool = VERBOSE,
):
    """Add a group expense paid by you."""
    with open_service(verbose) as service:
        raw = build_expense_input(
            service, user_id, group_id, title, amount, currency, fx,
            expense_date, note, category, split, share, interactive,
        )
        result = service.add_group_expense(user_id, group_id, raw)
        if result.fallback:
            console.print(f"[yellow]⚠️  {result.fallback}[/yellow]")
        display_expenses([result.expense], title="Added")


@app.command("expense-edit")
def expense_edit(
    group_id: int = typer.Argument(..., help="Group id"),
    expense_id: int = typer.Argument(..., help="Expense id"),
    title: str = typer.Argument(..., help="What was paid for"),
    amount: str = typer.Argument(..., help="Amount in the spending currency"),
    user_id: int = AS_USER,
    currency: str | None = typer.Option(None, "--currency", help="Spending currency"),
    fx: str = typer.Option("1", "--fx", help="1 unit of currency in the group's base"),
    expense_date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD"),
    note: str | None = typer.Option(None, "--note"),
    category: int | None = typer.Option(None, "--category", help="Category id"),
    split: SplitMode = typer.Option(SplitMode.EQUAL, "--split", case_sensitive=False),
    share: list[str] = typer.Option([], "--share", help="MEMBER_ID=VALUE, repeatable"),
    interactive: bool = typer.Option(False, "--interactive", "-i"),
    verbose: bool = VERBOSE,
):
    """Replace a group expense and recompute its shares."""
    with open_service(verbose) as service:
        raw = build_expense_input(
            service, user_id, group_id, title, amount, currency, fx,
            expense_date, note, category, split, share, interactive,
        )
        result = service.update_group_expense(user_id, group_id, expense_id, raw)
        if result.fallback:
            console.print(f"[yellow]⚠️  {result.fallback}[/yellow]")
        display_expenses([result.expense], title="Updated")


@app.command("expense-delete")
def expense_delete(
    group_id: int = typer.Argument(..., help="Group id"),
    expense_id: int = typer.Argument(..., help="Expense id"),
    user_id: int = AS_USER,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = VERBOSE,
):
    """Delete a group expense and its shares."""
    with open_service(verbose) as service:
        if not yes:
            confirm = input(f"Delete expense {expense_id}? [y/N] ").strip().lower()
            if confirm not in ("y", "yes"):
                console.print("[yellow]Cancelled.[/yellow]")
                return
        service.delete_group_expense(user_id, group_id, expense_id)
        console.print(f"[green]✓ Deleted expense {expense_id}[/green]")


@app.command("expenses")
def expenses(
    group_id: int = typer.Argument(..., help="Group id"),
    user_id: int = AS_USER,
    verbose: bool = VERBOSE,
):
    """List a group's expenses."""
    with open_service(verbose) as service:
        display_expenses(service.list_group_expenses(user_id, group_id))


@app.command("balances")
def balances(
    group_id: int = typer.Argument(..., help="Group id"),
    user_id: int = AS_USER,
    verbose: bool = VERBOSE,
):
    """Show who owes and who should receive in a group."""
    with open_service(verbose) as service:
        display_balances(service.get_group_balances(user_id, group_id))


@app.command("personal-add")
def personal_add(
    title: str = typer.Argument(..., help="What was paid for"),
    amount: str = typer.Argument(..., help="Amount in the spending currency"),
    user_id: int = AS_USER,
    currency: str | None = typer.Option(None, "--currency", help="Spending currency"),
    fx: str = typer.Option("1", "--fx", help="1 unit of currency in your base"),
    expense_date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD"),
    note: str | None = typer.Option(None, "--note"),
    category: int | None = typer.Option(None, "--category", help="Category id"),
    verbose: bool = VERBOSE,
):
    """Record a personal expense."""
    with open_service(verbose) as service:
        raw = {
            "title": title,
            "amount": amount,
            "currency": currency,
            "fx_to_base": fx,
            "expense_date": expense_date or date.today(),
            "note": note,
            "category_id": category,
        }
        expense = service.add_personal_expense(user_id, raw)
        display_expenses([expense], title="Added")


@app.command("personal")
def personal(user_id: int = AS_USER, verbose: bool = VERBOSE):
    """List your personal expenses."""
    with open_service(verbose) as service:
        display_expenses(service.list_personal_expenses(user_id), title="Personal")


if __name__ == "__main__":
    app()
