from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from subsync.domain import budget as budget_calc
from subsync.domain.budget import BudgetLevel, BudgetStatus
from subsync.domain.models import Record, ScheduleEntry, utcnow

_LEVEL_STYLE = {
    BudgetLevel.SAFE: "green",
    BudgetLevel.WARNING: "yellow",
    BudgetLevel.EXCEEDED: "bold red",
}


def _renewal_label(record: Record, now: datetime) -> str:
    days = record.days_until_renewal(now)
    if days == 0:
        return "[bold red]today[/bold red]"
    if days < 0:
        return f"[dim]{-days}d ago[/dim]"
    if record.is_renewal_soon(now):
        return f"[yellow]in {days}d[/yellow]"
    return f"in {days}d"


def print_records(
    records: Sequence[Record],
    pending_ids: Iterable[str] = (),
    now: Optional[datetime] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Render records as a rich table, in canonical order.

    Inactive records are dimmed; records waiting for upload are flagged.
    """
    console = console or Console()
    now = now or utcnow()
    pending = set(pending_ids)

    if not records:
        console.print("[yellow]No subscriptions tracked.[/yellow]")
        return

    table = Table(title="Subscriptions", box=box.ROUNDED, caption="Sorted by next renewal")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Cost", justify="right", style="green")
    table.add_column("Monthly", justify="right", style="bold green")
    table.add_column("Next renewal", justify="right")
    table.add_column("Status")

    for record in records:
        flags: List[str] = []
        flags.append("active" if record.active else "deleted")
        if record.essential:
            flags.append("essential")
        if record.id in pending:
            flags.append("unsynced")
        row_style = None if record.active else "dim"
        table.add_row(
            record.id[:8],
            record.display_name,
            record.category.value,
            f"{record.cost_display}{record.billing_period.short_name}",
            f"{record.monthly_cost:,.2f}",
            f"{record.next_occurrence:%Y-%m-%d} ({_renewal_label(record, now)})",
            ", ".join(flags),
            style=row_style,
        )

    console.print(table)


def print_budget(status: Optional[BudgetStatus], console: Optional[Console] = None) -> None:
    console = console or Console()
    if status is None:
        console.print("[yellow]No monthly budget configured.[/yellow]")
        return

    style = _LEVEL_STYLE[status.level]
    table = Table(title="Monthly Budget", box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Limit", f"{status.limit:,.2f}")
    table.add_row("Spending", f"[{style}]{status.current:,.2f}[/{style}]")
    table.add_row("Used", f"[{style}]{status.percentage:.0f}%[/{style}]")
    if status.over_budget:
        table.add_row("Over by", f"[bold red]{status.overage:,.2f}[/bold red]")
    else:
        table.add_row("Remaining", f"{status.remaining:,.2f}")
    table.add_row("Level", f"[{style}]{status.level.value}[/{style}]")
    console.print(table)


def print_stats(records: Sequence[Record], now: Optional[datetime] = None, console: Optional[Console] = None) -> None:
    """Spending by category, upcoming renewals and saving suggestions."""
    console = console or Console()
    now = now or utcnow()

    monthly = budget_calc.monthly_spending(records)
    console.print(
        f"[bold]Monthly:[/bold] {monthly:,.2f}  [bold]Yearly:[/bold] {budget_calc.yearly_spending(records):,.2f}"
    )

    spending = budget_calc.spending_by_category(records)
    counts = budget_calc.count_by_category(records)
    if spending:
        table = Table(title="Spending by Category", box=box.ROUNDED, caption="Monthly-normalized")
        table.add_column("Category", style="magenta")
        table.add_column("Subscriptions", justify="right")
        table.add_column("Monthly", justify="right", style="green")
        table.add_column("Share", justify="right", style="yellow")
        for category, amount in sorted(spending.items(), key=lambda kv: -kv[1]):
            share = (amount / monthly) * 100 if monthly > 0 else 0.0
            table.add_row(category.value, str(counts.get(category, 0)), f"{amount:,.2f}", f"{share:.0f}%")
        console.print(table)

    upcoming = budget_calc.upcoming_renewals(records, now)
    if upcoming:
        console.print("[bold]Renewing within a week:[/bold]")
        for record in upcoming:
            console.print(f"  {record.display_name} - {record.cost_display} ({_renewal_label(record, now)})")

    for suggestion in budget_calc.saving_suggestions(records):
        console.print(f"[yellow]Tip:[/yellow] {suggestion.message}")


def print_reminders(entries: Sequence[ScheduleEntry], title: str = "Scheduled Reminders", console: Optional[Console] = None) -> None:
    console = console or Console()
    if not entries:
        console.print("[yellow]No reminders scheduled.[/yellow]")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Identifier", style="dim", no_wrap=True)
    table.add_column("Fires at", style="green")
    table.add_column("Subscription", style="cyan")
    table.add_column("Repeat", justify="right")
    for entry in entries:
        table.add_row(
            entry.identifier,
            entry.fire_at.strftime("%Y-%m-%d %H:%M %Z"),
            entry.payload.get("display_name", "-"),
            entry.repeat.value if entry.repeat else "-",
        )
    console.print(table)


__all__ = ["print_budget", "print_records", "print_reminders", "print_stats"]
