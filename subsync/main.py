from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from pydantic import ValidationError

from subsync.config import get_settings
from subsync.coordinator import CANCEL_SUGGESTION_THRESHOLD, Coordinator, build_coordinator
from subsync.domain.models import BillingPeriod, Category, Record, utcnow
from subsync.reporter import print_budget, print_records, print_reminders, print_stats
from subsync.stores.abstract import RecordLimitReached
from subsync.utils.logging import configure_logging

app = typer.Typer(help="Offline-first subscription tracker with remote sync.")

T = TypeVar("T")

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]


def _run(action: Callable[[Coordinator], Awaitable[T]]) -> T:
    """Build a coordinator, load and sync, run `action`, then drain pushes."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    async def runner() -> T:
        coordinator = build_coordinator(settings)
        try:
            await coordinator.load()
            return await action(coordinator)
        finally:
            await coordinator.close()

    return asyncio.run(runner())


def _resolve(coordinator: Coordinator, id_or_prefix: str) -> Record:
    """Find a record by full id or unique id prefix, or exit with an error."""
    record = coordinator.get(id_or_prefix)
    if record is not None:
        return record
    matches = [r for r in coordinator.records if r.id.startswith(id_or_prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        typer.echo(f"No subscription matches '{id_or_prefix}'.", err=True)
    else:
        typer.echo(f"'{id_or_prefix}' is ambiguous ({len(matches)} matches).", err=True)
    raise typer.Exit(code=1)


def _invalid_input(exc: ValidationError) -> typer.Exit:
    """Echo the first validation problem on one line and return the exit to raise."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    typer.echo(f"Invalid {field}: {first.get('msg', 'invalid value')}.", err=True)
    return typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    limit = f"{settings.budget_monthly_limit:.2f}" if settings.budget_monthly_limit else "none"
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} "
        f"table={settings.remote_table} | data={settings.data_dir} | "
        f"reminders={list(settings.reminder_offsets_days)}d@{settings.reminder_hour:02d}:{settings.reminder_minute:02d} "
        f"{settings.reminder_timezone} | budget={limit} | "
        f"limit={'unlocked' if settings.unlocked else settings.free_tier_limit}"
    )


@app.command("list")
def list_records(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include soft-deleted subscriptions."),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by name or category."),
    category: Optional[Category] = typer.Option(None, "--category", "-c", help="Filter by category."),
) -> None:
    """
    List tracked subscriptions.
    """

    async def action(coordinator: Coordinator) -> None:
        records = coordinator.filtered(search=search, category=category, only_active=not show_all)
        print_records(records, pending_ids=coordinator.pending_ids)

    _run(action)


@app.command()
def add(
    service_name: str = typer.Argument(..., help="Service name, e.g. Netflix."),
    amount: float = typer.Option(..., "--amount", "-m", help="Charge per billing period."),
    next_occurrence: datetime = typer.Option(
        ..., "--next", "-n", formats=DATE_FORMATS, help="Next renewal date (YYYY-MM-DD)."
    ),
    period: BillingPeriod = typer.Option(BillingPeriod.MONTHLY, "--period", "-p"),
    category: Category = typer.Option(Category.OTHER, "--category", "-c"),
    currency: str = typer.Option("EUR", "--currency"),
    custom_name: Optional[str] = typer.Option(None, "--name", help="Display name override."),
    notes: Optional[str] = typer.Option(None, "--notes"),
    essential: bool = typer.Option(False, "--essential", help="Skip weekly usage checks."),
) -> None:
    """
    Track a new subscription.
    """

    async def action(coordinator: Coordinator) -> Record:
        impact = coordinator.budget_impact(amount, period)
        if impact is not None and impact.will_exceed_budget:
            typer.echo(
                f"Warning: this brings monthly spending to {impact.new_total:.2f} "
                f"({impact.new_percentage:.0f}% of {impact.budget_limit:.2f})."
            )
        return await coordinator.add(
            service_name=service_name,
            amount=amount,
            next_occurrence=next_occurrence,
            billing_period=period,
            category=category,
            currency=currency,
            custom_name=custom_name,
            notes=notes,
            essential=essential,
        )

    try:
        record = _run(action)
    except RecordLimitReached as exc:
        typer.echo(f"{exc}. Unlock the full version to track more subscriptions.", err=True)
        raise typer.Exit(code=1)
    except ValidationError as exc:
        raise _invalid_input(exc)
    typer.echo(f"Added {record.display_name} ({record.id}).")


@app.command()
def update(
    record_id: str = typer.Argument(..., help="Subscription id or unique prefix."),
    amount: Optional[float] = typer.Option(None, "--amount", "-m"),
    next_occurrence: Optional[datetime] = typer.Option(None, "--next", "-n", formats=DATE_FORMATS),
    period: Optional[BillingPeriod] = typer.Option(None, "--period", "-p"),
    category: Optional[Category] = typer.Option(None, "--category", "-c"),
    custom_name: Optional[str] = typer.Option(None, "--name"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    essential: Optional[bool] = typer.Option(None, "--essential/--not-essential"),
) -> None:
    """
    Change fields of a subscription.
    """
    changes = {
        "amount": amount,
        "next_occurrence": next_occurrence,
        "billing_period": period,
        "category": category,
        "custom_name": custom_name,
        "notes": notes,
        "essential": essential,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        typer.echo("Nothing to update.", err=True)
        raise typer.Exit(code=1)

    async def action(coordinator: Coordinator) -> Optional[Record]:
        return await coordinator.update(_resolve(coordinator, record_id).id, **changes)

    try:
        record = _run(action)
    except ValidationError as exc:
        raise _invalid_input(exc)
    typer.echo(f"Updated {record.display_name}.")


def _simple_mutation(method: str, verb: str) -> Callable[[str], None]:
    def command(record_id: str = typer.Argument(..., help="Subscription id or unique prefix.")) -> None:
        async def action(coordinator: Coordinator) -> Optional[Record]:
            target = _resolve(coordinator, record_id)
            return await getattr(coordinator, method)(target.id)

        record = _run(action)
        typer.echo(f"{verb} {record.display_name}.")

    return command


app.command("delete", help="Soft-delete a subscription (reversible).")(_simple_mutation("delete", "Deleted"))
app.command("reactivate", help="Undo a soft delete.")(_simple_mutation("reactivate", "Reactivated"))
app.command("renewed", help="Move the next renewal forward one billing period.")(
    _simple_mutation("advance", "Advanced")
)


@app.command()
def purge(
    record_id: str = typer.Argument(..., help="Subscription id or unique prefix."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """
    Permanently delete a subscription, locally and remotely.
    """

    async def action(coordinator: Coordinator) -> Optional[str]:
        target = _resolve(coordinator, record_id)
        if not yes and not typer.confirm(f"Permanently delete {target.display_name}?"):
            return None
        await coordinator.permanent_delete(target.id)
        return target.display_name

    name = _run(action)
    if name is None:
        typer.echo("Aborted.")
        return
    typer.echo(f"Purged {name}.")


@app.command()
def cancel_info(record_id: str = typer.Argument(..., help="Subscription id or unique prefix.")) -> None:
    """
    Show where to cancel a subscription.
    """

    async def action(coordinator: Coordinator) -> Optional[str]:
        return coordinator.cancellation_reference(_resolve(coordinator, record_id).id)

    reference = _run(action)
    typer.echo(reference or "No cancellation page known for this service.")


@app.command()
def usage(
    record_id: str = typer.Argument(..., help="Subscription id or unique prefix."),
    used: Optional[bool] = typer.Option(None, "--used/--not-used", help="Answer to this week's usage check."),
) -> None:
    """
    Answer a weekly usage check for a subscription.
    """
    if used is None:
        typer.echo("Pass --used or --not-used.", err=True)
        raise typer.Exit(code=1)

    async def action(coordinator: Coordinator) -> tuple:
        target = _resolve(coordinator, record_id)
        count = await coordinator.record_usage_answer(target.id, used)
        return target, count, coordinator.cancellation_reference(target.id)

    target, count, reference = _run(action)
    if count is None:
        typer.echo(f"Usage checks are off for {target.display_name}.")
        return
    if used:
        typer.echo(f"Noted, {target.display_name} is in use.")
        return
    typer.echo(f"Noted, {target.display_name} unused {count} time(s).")
    if count >= CANCEL_SUGGESTION_THRESHOLD:
        typer.echo(f"Consider cancelling: {reference or 'no cancellation page known for this service'}")


@app.command()
def refresh() -> None:
    """
    Reconcile with the remote store and rebuild reminders.
    """

    async def action(coordinator: Coordinator) -> None:
        outcome = await coordinator.refresh_data()
        state = "synced" if outcome.remote_available else "offline, local data only"
        typer.echo(
            f"{len(outcome.merged)} subscriptions ({state}); "
            f"{len(coordinator.pending_ids)} waiting for upload."
        )

    _run(action)


@app.command()
def budget(
    amount: Optional[float] = typer.Option(None, "--amount", "-m", help="Preview adding this charge."),
    period: BillingPeriod = typer.Option(BillingPeriod.MONTHLY, "--period", "-p"),
) -> None:
    """
    Show the monthly budget status.
    """

    async def action(coordinator: Coordinator) -> None:
        print_budget(coordinator.budget_status())
        if amount is not None:
            impact = coordinator.budget_impact(amount, period)
            if impact is not None:
                typer.echo(
                    f"Adding {amount:.2f}{period.short_name} -> {impact.new_total:.2f}/month "
                    f"({impact.new_percentage:.0f}%)"
                )

    _run(action)


@app.command()
def stats() -> None:
    """
    Spending statistics and saving suggestions.
    """

    async def action(coordinator: Coordinator) -> None:
        print_stats(coordinator.records)

    _run(action)


@app.command()
def reminders(
    due: bool = typer.Option(False, "--due", help="Deliver and clear reminders whose time has passed."),
) -> None:
    """
    Show scheduled reminders.
    """

    async def action(coordinator: Coordinator) -> None:
        backend = coordinator.scheduler.backend
        if due and hasattr(backend, "pop_due"):
            print_reminders(backend.pop_due(utcnow()), title="Due Reminders")
            return
        print_reminders(coordinator.scheduler.pending())

    _run(action)


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation.")) -> None:
    """
    Clear all local data and reminders. The remote store is not touched.
    """
    if not yes and not typer.confirm("Clear all local subscriptions and reminders?"):
        typer.echo("Aborted.")
        return

    async def action(coordinator: Coordinator) -> None:
        await coordinator.reset_local()

    _run(action)
    typer.echo("Local data cleared.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
