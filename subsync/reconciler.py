"""
Reconciliation of the local record set with the remote store.

`merge` is a pure, synchronous last-writer-wins merge:

- a record whose id is pending upload keeps its local version (or its local
  absence, for a purge that has not reached the remote yet);
- otherwise the version with the strictly greater `updated_at` wins, ties go
  to the remote copy since it is already durable;
- remote-only records are adopted, local-only records are kept and queued
  for upload.

`Reconciler` wraps the merge with the I/O: availability check, fetch, and
application of the resulting remote operations. Remote failures never
escape; the pass degrades to local-only and is logged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, List

from subsync.domain.models import MergeResult, OpKind, Record, RemoteOp, sort_records
from subsync.stores.abstract import NotFound, RemoteError, RemoteStore
from subsync.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class SyncOutcome:
    merged: List[Record]
    ops: List[RemoteOp] = field(default_factory=list)
    remote_available: bool = False


def merge(
    local: Iterable[Record],
    remote: Iterable[Record],
    pending: AbstractSet[str] = frozenset(),
) -> MergeResult:
    """
    Merge local and remote record sets.

    Parameters
    ----------
    local : iterable[Record]
        Canonical local records (one per id).
    remote : iterable[Record]
        Records fetched from the remote store.
    pending : set[str]
        Ids whose latest local mutation has not been confirmed remotely.

    Returns
    -------
    MergeResult
        The merged set sorted by next occurrence, and the remote operations
        needed to make the remote store match it.
    """
    local_by_id: Dict[str, Record] = {r.id: r for r in local}
    merged: List[Record] = []
    ops: List[RemoteOp] = []
    seen: set = set()

    for remote_record in remote:
        rid = remote_record.id
        if rid in seen:
            log.warning("[MERGE] Duplicate remote id ignored", extra={"record_id": rid})
            continue
        seen.add(rid)
        local_record = local_by_id.pop(rid, None)

        if rid in pending:
            if local_record is None:
                # Purged locally, delete not yet confirmed.
                ops.append(RemoteOp.delete(rid))
            else:
                merged.append(local_record)
                ops.append(RemoteOp.upsert(local_record))
        elif local_record is not None:
            if local_record.updated_at > remote_record.updated_at:
                merged.append(local_record)
                ops.append(RemoteOp.upsert(local_record))
            else:
                merged.append(remote_record)
        else:
            merged.append(remote_record)

    for local_record in local_by_id.values():
        merged.append(local_record)
        ops.append(RemoteOp.upsert(local_record))

    return MergeResult(merged=sort_records(merged), ops=ops)


class Reconciler:
    """
    Runs reconciliation passes against a remote store.

    Parameters
    ----------
    remote : RemoteStore
        Remote store client. Its errors are caught here.
    """

    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote

    async def sync(self, local: List[Record], pending: AbstractSet[str]) -> SyncOutcome:
        """
        Fetch remote state and merge it with `local`.

        On an unavailable remote or a failed fetch, returns `local` unchanged
        with no operations and `remote_available=False`.
        """
        if not await self.remote.check_availability():
            log.warning("[SYNC] Remote unavailable, using local data only", extra={"local": len(local)})
            return SyncOutcome(merged=sort_records(local))

        try:
            remote_records = await self.remote.fetch_all()
        except RemoteError as exc:
            log.error(
                "[SYNC] Fetch failed, using local data only",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            return SyncOutcome(merged=sort_records(local))

        result = merge(local, remote_records, pending)
        log.info(
            "[SYNC] Merged records",
            extra={
                "local": len(local),
                "remote": len(remote_records),
                "merged": len(result.merged),
                "ops": len(result.ops),
                "pending": len(pending),
            },
        )
        return SyncOutcome(merged=result.merged, ops=result.ops, remote_available=True)

    async def push(self, op: RemoteOp) -> bool:
        """Apply one remote operation. Returns False on failure (logged)."""
        try:
            if op.kind is OpKind.UPSERT:
                await self.remote.upsert(op.record)
            else:
                try:
                    await self.remote.delete(op.record_id)
                except NotFound:
                    pass
        except RemoteError as exc:
            log.warning(
                f"[PUSH] {op.kind.value} failed, staying local",
                extra={"record_id": op.record_id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return False
        return True

    async def apply(self, ops: List[RemoteOp]) -> List[RemoteOp]:
        """Apply operations concurrently and return the ones that failed."""
        if not ops:
            return []
        results = await asyncio.gather(*(self.push(op) for op in ops))
        failed = [op for op, ok in zip(ops, results) if not ok]
        log.info("[PUSH] Applied remote operations", extra={"total": len(ops), "failed": len(failed)})
        return failed


__all__ = ["Reconciler", "SyncOutcome", "merge"]
