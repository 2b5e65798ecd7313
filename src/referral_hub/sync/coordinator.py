"""Local write coordinator -- the bridge from committed writes to remote sync.

The local store is the system of record. The coordinator is only invoked
after a local commit and never raises back into the write path: whatever
happens remotely, the local write stands.

Ordering per business key:
- An asyncio.Lock per (kind, business key) serialises sync attempts in the
  order they were requested.
- Each attempt carries the commit timestamp of the write that triggered it.
  If a newer write for the same key has been committed by the time an
  attempt would run or persist, the attempt is skipped or its outcome is
  discarded. The repository applies the same check in SQL (sync_written_at).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.referral_hub.sync.executor import SyncExecutor
from src.referral_hub.sync.field_mapping import get_target
from src.referral_hub.sync.schemas import (
    LiveOutcome,
    RecordKind,
    SimulatedOutcome,
    SyncAction,
    SyncRecord,
)

logger = structlog.get_logger(__name__)

_KeyT = tuple[RecordKind, str]

# Commit timestamps are kept for idle keys until the table grows past this size
_MAX_TRACKED_KEYS = 10_000
_COMMIT_RETENTION = timedelta(minutes=10)


class SyncCoordinator:
    """Schedules sync attempts for committed local writes and persists outcomes.

    Args:
        executor: Performs the actual sync attempt.
        repository: Provides persist_sync_result(kind, local_id, remote_id,
            sync_status, written_at) -> bool.
        background: If True, hooks return immediately and sync runs as a task.
    """

    def __init__(
        self,
        executor: SyncExecutor,
        repository: Any,
        background: bool = False,
    ) -> None:
        self._executor = executor
        self._repository = repository
        self._background = background
        self._locks: dict[_KeyT, asyncio.Lock] = {}
        self._lock_users: dict[_KeyT, int] = {}
        self._latest_commit: dict[_KeyT, datetime] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def background(self) -> bool:
        return self._background

    @property
    def pending(self) -> int:
        """Number of background sync tasks still running."""
        return len(self._tasks)

    # ── Hooks ───────────────────────────────────────────────────────────────

    async def on_record_committed(
        self,
        record: SyncRecord,
        business_key_extractor: Callable[[SyncRecord], str] | None = None,
    ) -> LiveOutcome | SimulatedOutcome | None:
        """Sync a record whose create/update has been committed locally.

        Args:
            record: Snapshot of the committed record.
            business_key_extractor: Optional override for reading the key.

        Returns:
            The outcome in inline mode. None in background mode, or when the
            attempt was superseded by a newer write before it ran.
        """
        extractor = business_key_extractor or get_target(record.kind).business_key
        business_key = extractor(record)
        key = (record.kind, business_key)
        self._note_commit(key, record.updated_at)

        if self._background:
            self._spawn(self._sync_committed(key, record))
            return None
        return await self._sync_committed(key, record)

    async def on_record_deleted(
        self,
        kind: RecordKind,
        business_key: str,
        deleted_at: datetime | None = None,
    ) -> LiveOutcome | SimulatedOutcome | None:
        """Propagate a committed local delete.

        Args:
            kind: Record kind.
            business_key: Key of the deleted record.
            deleted_at: Commit time of the delete, on the same clock as
                record.updated_at. Defaults to now.
        """
        key = (kind, business_key)
        self._note_commit(key, deleted_at or datetime.now(timezone.utc))

        if self._background:
            self._spawn(self._sync_deleted(key))
            return None
        return await self._sync_deleted(key)

    async def drain(self) -> None:
        """Wait for all background sync tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Internals ───────────────────────────────────────────────────────────

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _note_commit(self, key: _KeyT, written_at: datetime) -> None:
        latest = self._latest_commit.get(key)
        if latest is None or written_at >= latest:
            self._latest_commit[key] = written_at
        if len(self._latest_commit) > _MAX_TRACKED_KEYS:
            self._prune(written_at - _COMMIT_RETENTION)

    def _prune(self, cutoff: datetime) -> None:
        for key, latest in list(self._latest_commit.items()):
            if key not in self._locks and latest < cutoff:
                del self._latest_commit[key]

    def _is_stale(self, key: _KeyT, written_at: datetime) -> bool:
        latest = self._latest_commit.get(key)
        return latest is not None and written_at < latest

    async def _sync_committed(
        self, key: _KeyT, record: SyncRecord
    ) -> LiveOutcome | SimulatedOutcome | None:
        kind, business_key = key
        async with self._key_lock(key):
            if self._is_stale(key, record.updated_at):
                logger.info(
                    "sync.superseded",
                    kind=kind.value,
                    business_key=business_key,
                    written_at=record.updated_at.isoformat(),
                )
                return None

            try:
                outcome = await self._executor.sync_record(record, business_key)
            except Exception as exc:
                # Executor converts sync errors itself; anything else is a bug
                logger.error(
                    "sync.executor_error",
                    kind=kind.value,
                    business_key=business_key,
                    error=str(exc),
                    exc_info=True,
                )
                outcome = LiveOutcome(
                    success=False,
                    action=SyncAction.UPDATED if record.remote_id else SyncAction.CREATED,
                    error=str(exc),
                    written_at=record.updated_at,
                )

            if self._is_stale(key, record.updated_at):
                logger.info(
                    "sync.outcome_discarded",
                    kind=kind.value,
                    business_key=business_key,
                    mode=outcome.mode,
                    reason="newer local write committed",
                )
                return outcome

            await self._persist(record, outcome)
            return outcome

    async def _sync_deleted(self, key: _KeyT) -> LiveOutcome | SimulatedOutcome | None:
        kind, business_key = key
        async with self._key_lock(key):
            try:
                return await self._executor.delete_record(kind, business_key)
            except Exception as exc:
                logger.error(
                    "sync.executor_error",
                    kind=kind.value,
                    business_key=business_key,
                    error=str(exc),
                    exc_info=True,
                )
                return LiveOutcome(success=False, action=SyncAction.DELETED, error=str(exc))

    async def _persist(self, record: SyncRecord, outcome: LiveOutcome | SimulatedOutcome) -> None:
        remote_id = outcome.remote_id if outcome.success else None
        try:
            applied = await self._repository.persist_sync_result(
                record.kind,
                record.local_id,
                remote_id,
                outcome.sync_status,
                record.updated_at,
            )
        except Exception as exc:
            logger.error(
                "sync.persist_failed",
                kind=record.kind.value,
                local_id=record.local_id,
                sync_status=outcome.sync_status.value,
                error=str(exc),
                exc_info=True,
            )
            return

        if not applied:
            logger.info(
                "sync.outcome_discarded",
                kind=record.kind.value,
                local_id=record.local_id,
                mode=outcome.mode,
                reason="record changed or removed before outcome was stored",
            )

    def _key_lock(self, key: _KeyT) -> "_KeyLock":
        return _KeyLock(self, key)


class _KeyLock:
    """Reference-counted per-key lock; the entry is dropped when unused."""

    def __init__(self, coordinator: SyncCoordinator, key: _KeyT) -> None:
        self._coordinator = coordinator
        self._key = key

    async def __aenter__(self) -> None:
        c = self._coordinator
        lock = c._locks.setdefault(self._key, asyncio.Lock())
        c._lock_users[self._key] = c._lock_users.get(self._key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            # Cancelled while waiting: drop this waiter's reference
            self._release_reference()
            raise

    async def __aexit__(self, *exc_info: Any) -> None:
        self._coordinator._locks[self._key].release()
        self._release_reference()

    def _release_reference(self) -> None:
        c = self._coordinator
        c._lock_users[self._key] -= 1
        if c._lock_users[self._key] == 0:
            del c._lock_users[self._key]
            del c._locks[self._key]
