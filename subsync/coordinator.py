"""
Coordinator: the single writer of the canonical record set.

Every mutation runs under one asyncio lock and performs, in order:

1. the in-memory mutation (stamping `updated_at` from the injected clock),
2. the local snapshot save,
3. the pending-upload mark for the affected id,
4. the scheduler update scoped to the affected record,
5. the remote push, launched as a tracked task on the immutable record.

Pushes for the same id are chained so they reach the remote in submission
order. A push only clears the pending mark if no later mutation of the
same id happened meanwhile. `refresh_data` joins outstanding pushes before
running a full reconciliation pass.

Usage (from an async entry point):
    coordinator = build_coordinator(get_settings())
    await coordinator.load()
    record = await coordinator.add(service_name="Netflix", amount=12.99, next_occurrence=when)
    await coordinator.close()
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from subsync.collaborators import FreeTierGate, PurchaseGate, ServiceCatalog, StaticServiceCatalog
from subsync.config import Settings
from subsync.domain import budget as budget_calc
from subsync.domain.budget import BudgetImpact, BudgetSettings, BudgetStatus
from subsync.domain.models import BillingPeriod, Category, Record, RemoteOp, sort_records, utcnow
from subsync.reconciler import Reconciler, SyncOutcome
from subsync.scheduling.backends import JsonFileReminderBackend, ReminderBackend
from subsync.scheduling.scheduler import ReminderPolicy, SchedulerAdapter
from subsync.stores.abstract import LocalPersistFailure, RecordLimitReached, RecordStore, RemoteStore
from subsync.stores.local import InMemoryUsageLedger, JsonRecordStore, JsonUsageLedger
from subsync.stores.remote import PostgresRemoteStore
from subsync.utils.logging import get_logger

log = get_logger(__name__)

CANCEL_SUGGESTION_THRESHOLD = 2


class Coordinator:
    """
    Owns the canonical record list and the pending-upload map.

    Parameters
    ----------
    store : RecordStore
        Local snapshot persistence.
    reconciler : Reconciler
        Merge + remote I/O.
    scheduler : SchedulerAdapter
        Reminder side effects.
    budget : BudgetSettings, optional
        Budget used for alerts and status.
    gate : PurchaseGate, optional
        Decides whether another active record may be added.
    catalog : ServiceCatalog, optional
        Cancellation page lookup.
    usage : InMemoryUsageLedger, optional
        Answers to weekly usage checks.
    clock : callable
        Returns the current aware datetime; stamps every mutation.
    """

    def __init__(
        self,
        store: RecordStore,
        reconciler: Reconciler,
        scheduler: SchedulerAdapter,
        budget: Optional[BudgetSettings] = None,
        gate: Optional[PurchaseGate] = None,
        catalog: Optional[ServiceCatalog] = None,
        usage: Optional[InMemoryUsageLedger] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.budget = budget or BudgetSettings()
        self.gate = gate or FreeTierGate()
        self.catalog = catalog or StaticServiceCatalog()
        self.usage = usage if usage is not None else InMemoryUsageLedger()
        self._clock = clock

        self._records: List[Record] = []
        # id -> sequence number of the latest unconfirmed mutation
        self._pending: Dict[str, int] = {}
        self._seq = itertools.count(1)
        self._push_tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    @property
    def records(self) -> List[Record]:
        return list(self._records)

    @property
    def active_records(self) -> List[Record]:
        return [r for r in self._records if r.active]

    @property
    def pending_ids(self) -> FrozenSet[str]:
        return frozenset(self._pending)

    def get(self, record_id: str) -> Optional[Record]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def filtered(
        self,
        search: Optional[str] = None,
        category: Optional[Category] = None,
        only_active: bool = True,
    ) -> List[Record]:
        result = self.active_records if only_active else self.records
        if category is not None:
            result = [r for r in result if r.category == category]
        if search:
            query = search.lower()
            result = [
                r for r in result if query in r.display_name.lower() or query in r.category.value.lower()
            ]
        return result

    @property
    def total_monthly_cost(self) -> float:
        return budget_calc.monthly_spending(self._records)

    @property
    def total_yearly_cost(self) -> float:
        return self.total_monthly_cost * 12

    def budget_status(self) -> Optional[BudgetStatus]:
        return budget_calc.budget_status(self._records, self.budget)

    def budget_impact(self, amount: float, period: BillingPeriod) -> Optional[BudgetImpact]:
        return budget_calc.budget_impact(self._records, amount, period, self.budget)

    def cancellation_reference(self, record_id: str) -> Optional[str]:
        record = self.get(record_id)
        if record is None:
            return None
        return self.catalog.find_cancellation_reference(record.service_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index_of(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    def _persist(self) -> None:
        try:
            self.store.save(self._records)
        except LocalPersistFailure as exc:
            log.error("[PERSIST] Local save failed, keeping in-memory state", extra={"error": str(exc)})

    def _mark_pending(self, record_id: str) -> int:
        seq = next(self._seq)
        self._pending[record_id] = seq
        return seq

    def _schedule_safely(self, action: str, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except OSError as exc:
            log.error(f"[SCHEDULE] {action} failed", extra={"error": str(exc)})

    def _launch_push(self, op: RemoteOp, seq: int) -> None:
        previous = self._push_tasks.get(op.record_id)
        task = asyncio.create_task(self._push(op, seq, previous))
        self._push_tasks[op.record_id] = task
        task.add_done_callback(lambda t, rid=op.record_id: self._forget_push(rid, t))

    async def _push(self, op: RemoteOp, seq: int, previous: Optional[asyncio.Task]) -> bool:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        ok = await self.reconciler.push(op)
        if ok and self._pending.get(op.record_id) == seq:
            del self._pending[op.record_id]
        return ok

    def _forget_push(self, record_id: str, task: asyncio.Task) -> None:
        if self._push_tasks.get(record_id) is task:
            del self._push_tasks[record_id]
        if not task.cancelled() and task.exception() is not None:
            log.error(
                "[PUSH] Push task crashed",
                extra={"record_id": record_id, "error": repr(task.exception())},
            )

    def _commit(self, record: Record) -> int:
        """Persist the snapshot and mark `record` pending; returns its push sequence."""
        self._persist()
        return self._mark_pending(record.id)

    def _forget_usage(self, record_id: str) -> None:
        try:
            self.usage.forget(record_id)
        except LocalPersistFailure as exc:
            log.error("[USAGE] Could not drop usage answers", extra={"record_id": record_id, "error": str(exc)})

    def _evaluate_budget(self) -> None:
        self._schedule_safely("budget evaluation", self.scheduler.evaluate_budget, self._records, self.budget)

    async def _mutate(self, record_id: str, action: str, change: Callable[[Record, datetime], Record]) -> Optional[Record]:
        async with self._lock:
            index = self._index_of(record_id)
            if index is None:
                log.warning(f"[{action}] Unknown record", extra={"record_id": record_id})
                return None

            updated = change(self._records[index], self._clock())
            self._records[index] = updated
            self._records = sort_records(self._records)
            seq = self._commit(updated)
            if updated.active:
                self._schedule_safely("reschedule", self.scheduler.reconcile_record, updated)
            else:
                self._schedule_safely("cancel", self.scheduler.cancel_record, updated.id)
            self._launch_push(RemoteOp.upsert(updated), seq)
            self._evaluate_budget()

        log.info(f"[{action}] {updated.display_name}", extra={"record_id": updated.id})
        return updated

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, **fields: Any) -> Record:
        """
        Create a record from `fields` and track it.

        Raises
        ------
        RecordLimitReached
            When the purchase gate refuses another active record.
        """
        async with self._lock:
            if not self.gate.can_add_record(len(self.active_records)):
                raise RecordLimitReached(f"Active record limit reached ({len(self.active_records)})")

            now = self._clock()
            record = Record(**{**fields, "created_at": now, "updated_at": now})
            if self._index_of(record.id) is not None:
                raise ValueError(f"Record id already exists: {record.id}")

            self._records = sort_records([*self._records, record])
            seq = self._commit(record)
            self._schedule_safely("schedule", self.scheduler.reconcile_record, record)
            self._launch_push(RemoteOp.upsert(record), seq)
            self._evaluate_budget()

        log.info(f"[ADD] {record.display_name}", extra={"record_id": record.id})
        return record

    async def update(self, record_id: str, **changes: Any) -> Optional[Record]:
        return await self._mutate(record_id, "UPDATE", lambda r, now: r.touched(now, **changes))

    async def delete(self, record_id: str) -> Optional[Record]:
        """Soft delete: the record stays in the set with `active=False`."""
        return await self._mutate(record_id, "DELETE", lambda r, now: r.touched(now, active=False))

    async def reactivate(self, record_id: str) -> Optional[Record]:
        return await self._mutate(record_id, "REACTIVATE", lambda r, now: r.touched(now, active=True))

    async def advance(self, record_id: str) -> Optional[Record]:
        """Move a record's next occurrence forward by one billing period."""
        return await self._mutate(record_id, "ADVANCE", lambda r, now: r.advanced(now))

    async def permanent_delete(self, record_id: str) -> bool:
        """Remove a record locally, from the remote store and from the schedule."""
        async with self._lock:
            index = self._index_of(record_id)
            if index is None:
                log.warning("[PURGE] Unknown record", extra={"record_id": record_id})
                return False

            removed = self._records.pop(index)
            self._persist()
            seq = self._mark_pending(record_id)
            self._schedule_safely("cancel", self.scheduler.cancel_record, record_id)
            self._launch_push(RemoteOp.delete(record_id), seq)
            self._forget_usage(record_id)
            self._evaluate_budget()

        log.info(f"[PURGE] {removed.display_name}", extra={"record_id": record_id})
        return True

    async def set_budget(self, limit: Optional[float], notify_at_percentage: Optional[float] = None) -> Optional[BudgetStatus]:
        async with self._lock:
            notify = notify_at_percentage if notify_at_percentage is not None else self.budget.notify_at_percentage
            self.budget = BudgetSettings.from_limit(limit, notify)
            self._evaluate_budget()
            return self.budget_status()

    async def record_usage_answer(self, record_id: str, used: bool) -> Optional[int]:
        """
        Store the answer to a usage check and return the record's not-used
        count, or None when the answer was ignored.

        From the second "not used" answer on, a cancellation suggestion is
        scheduled. The record itself is not modified.
        """
        async with self._lock:
            record = self.get(record_id)
            if record is None:
                log.warning("[USAGE] Unknown record", extra={"record_id": record_id})
                return None
            if record.essential or not record.active:
                log.info("[USAGE] Answer ignored for essential or inactive record", extra={"record_id": record_id})
                return None

            try:
                count = self.usage.record_answer(record_id, used)
            except LocalPersistFailure as exc:
                log.error("[USAGE] Could not store usage answer", extra={"record_id": record_id, "error": str(exc)})
                count = self.usage.not_used_count(record_id)

            if not used and count >= CANCEL_SUGGESTION_THRESHOLD:
                reference = self.catalog.find_cancellation_reference(record.service_name)
                self._schedule_safely("cancel suggestion", self.scheduler.suggest_cancellation, record, reference)

        log.info(
            f"[USAGE] {record.display_name}",
            extra={"record_id": record_id, "used": used, "not_used_count": count},
        )
        return count

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every outstanding remote push to finish."""
        tasks = list(self._push_tasks.values())
        if not tasks:
            return
        # Crashed pushes are logged by their done callback.
        await asyncio.gather(*tasks, return_exceptions=True)

    async def load(self) -> SyncOutcome:
        """Load the local snapshot, then run a full refresh."""
        async with self._lock:
            snapshot = self.store.load()
            self._records = sort_records(snapshot or [])
            log.info("[LOAD] Local records loaded", extra={"count": len(self._records)})
        return await self.refresh_data()

    async def refresh_data(self) -> SyncOutcome:
        """
        Full reconciliation pass followed by a full reminder reconcile.

        Remote failures degrade to local-only; nothing is raised.
        """
        async with self._lock:
            await self.drain()
            outcome = await self.reconciler.sync(list(self._records), frozenset(self._pending))
            self._records = list(outcome.merged)
            self._persist()

            if outcome.remote_available:
                failed = await self.reconciler.apply(outcome.ops)
                failed_ids = {op.record_id for op in failed}
                self._pending = {rid: seq for rid, seq in self._pending.items() if rid in failed_ids}

            self._schedule_safely("reconcile", self.scheduler.reconcile, self.active_records)
            self._schedule_safely("usage checks", self.scheduler.reconcile_usage_checks, self._records)
            self._evaluate_budget()

        log.info(
            "[REFRESH COMPLETE]",
            extra={
                "records": len(outcome.merged),
                "remote_available": outcome.remote_available,
                "pending": len(self._pending),
            },
        )
        return outcome

    async def reset_local(self) -> None:
        """Forget all local data and reminders. The remote store is left untouched."""
        async with self._lock:
            await self.drain()
            self._records = []
            self._pending = {}
            self._persist()
            self._schedule_safely("cancel all", self.scheduler.cancel_all)
            try:
                self.usage.clear()
            except LocalPersistFailure as exc:
                log.error("[USAGE] Could not clear usage answers", extra={"error": str(exc)})
        log.info("[RESET] All local data cleared")

    async def close(self) -> None:
        await self.drain()
        close = getattr(self.reconciler.remote, "close", None)
        if close is not None:
            await close()


def build_coordinator(
    settings: Settings,
    remote: Optional[RemoteStore] = None,
    backend: Optional[ReminderBackend] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Coordinator:
    """Composition root: wire the stores, reconciler and scheduler from settings."""
    store = JsonRecordStore(settings.snapshot_path, namespace_key=settings.snapshot_key)
    remote = remote or PostgresRemoteStore.from_settings(settings)
    backend = backend or JsonFileReminderBackend(settings.reminders_path)
    scheduler = SchedulerAdapter(backend, ReminderPolicy.from_settings(settings), clock=clock)
    return Coordinator(
        store=store,
        reconciler=Reconciler(remote),
        scheduler=scheduler,
        budget=BudgetSettings.from_limit(settings.budget_monthly_limit, settings.budget_notify_percentage),
        gate=FreeTierGate(limit=settings.free_tier_limit, unlocked=settings.unlocked),
        catalog=StaticServiceCatalog(),
        usage=JsonUsageLedger(settings.usage_path),
        clock=clock,
    )


__all__ = ["CANCEL_SUGGESTION_THRESHOLD", "Coordinator", "build_coordinator"]
