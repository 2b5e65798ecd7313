"""Sync executor -- pushes one record change to Salesforce.

Decision flow for a committed record:

    ensure_session() fails            -> simulation
    upsert lookup fails               -> simulation
    no remote match                   -> create   (failure: live, success=False)
    one or more remote matches        -> update   (failure: live, success=False)

Simulation is only used when no real write was attempted. Once a create,
update, or delete has been sent, its failure is reported as a failed live
outcome so the record is marked "failed" and never shows a fake success.
"""

from __future__ import annotations

import structlog

from src.referral_hub.core.monitoring import record_sync_outcome
from src.referral_hub.sync.errors import AuthenticationError, ReconciliationAmbiguity, SyncError
from src.referral_hub.sync.field_mapping import SyncTarget, get_target, to_salesforce_fields
from src.referral_hub.sync.schemas import (
    LiveOutcome,
    RecordKind,
    SalesforceSession,
    SimulatedOutcome,
    SyncAction,
    SyncRecord,
    UpsertResolution,
)
from src.referral_hub.sync.session import SessionManager
from src.referral_hub.sync.simulation import SimulationFallback, is_simulated_id
from src.referral_hub.sync.upsert import UpsertResolver

logger = structlog.get_logger(__name__)


class SyncExecutor:
    """Runs a single sync attempt for one record.

    Args:
        session_manager: Owner of the Salesforce session.
        resolver: Business-key lookup.
        simulation: Fallback used when no live attempt is possible.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        resolver: UpsertResolver,
        simulation: SimulationFallback,
    ) -> None:
        self._sessions = session_manager
        self._resolver = resolver
        self._simulation = simulation

    @property
    def session_manager(self) -> SessionManager:
        return self._sessions

    async def sync_record(
        self, record: SyncRecord, business_key: str | None = None
    ) -> LiveOutcome | SimulatedOutcome:
        """Create or update the remote copy of `record`.

        Args:
            record: Snapshot of the committed local record.
            business_key: Explicit key; defaults to the target's key column.

        Returns:
            LiveOutcome or SimulatedOutcome, tagged with record.updated_at.
        """
        target = get_target(record.kind)
        business_key = business_key or target.business_key(record)
        has_remote = bool(record.remote_id) and not is_simulated_id(record.remote_id)
        intended = SyncAction.UPDATED if has_remote else SyncAction.CREATED

        session, reason = await self._acquire_session()
        if session is None:
            return await self._simulate(record, intended, reason)

        try:
            resolution = await self._resolver.resolve(session, target, business_key)
        except ReconciliationAmbiguity as exc:
            outcome = LiveOutcome(
                success=False,
                action=SyncAction.UPDATED,
                error=exc.message,
                written_at=record.updated_at,
            )
            return self._finish(record.kind, business_key, outcome)
        except SyncError as exc:
            if isinstance(exc, AuthenticationError):
                await self._sessions.invalidate(session)
            logger.warning(
                "sync.lookup_failed",
                kind=record.kind.value,
                business_key=business_key,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            return await self._simulate(record, intended, f"lookup failed: {exc.message}")

        outcome = await self._write(session, target, record, business_key, resolution)
        return self._finish(record.kind, business_key, outcome)

    async def delete_record(
        self, kind: RecordKind, business_key: str
    ) -> LiveOutcome | SimulatedOutcome:
        """Delete the remote copy of a locally deleted record.

        A key with no remote match is a successful no-op.
        """
        target = get_target(kind)

        session, reason = await self._acquire_session()
        if session is None:
            return await self._simulate_delete(kind, business_key, reason)

        try:
            resolution = await self._resolver.resolve(session, target, business_key)
        except SyncError as exc:
            if isinstance(exc, AuthenticationError):
                await self._sessions.invalidate(session)
            logger.warning(
                "sync.lookup_failed",
                kind=kind.value,
                business_key=business_key,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            return await self._simulate_delete(kind, business_key, f"lookup failed: {exc.message}")

        if not resolution.exists:
            outcome = LiveOutcome(success=True, action=SyncAction.NOOP)
            return self._finish(kind, business_key, outcome)

        try:
            await self._sessions.client.delete(session, target.sobject, resolution.remote_record_id)
        except SyncError as exc:
            if isinstance(exc, AuthenticationError):
                await self._sessions.invalidate(session)
            outcome = LiveOutcome(success=False, action=SyncAction.DELETED, error=exc.message)
        else:
            outcome = LiveOutcome(
                success=True,
                action=SyncAction.DELETED,
                remote_id=resolution.remote_record_id,
            )
        return self._finish(kind, business_key, outcome)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _acquire_session(self) -> tuple[SalesforceSession | None, str]:
        result = await self._sessions.ensure_session()
        if not result.connected:
            return None, f"session unavailable: {result.error}"
        session = self._sessions.session
        if session is None:
            return None, "session unavailable: disconnected during sync"
        return session, ""

    async def _write(
        self,
        session: SalesforceSession,
        target: SyncTarget,
        record: SyncRecord,
        business_key: str,
        resolution: UpsertResolution,
    ) -> LiveOutcome:
        fields = to_salesforce_fields(record, target, business_key)
        client = self._sessions.client

        if not resolution.exists:
            action = SyncAction.CREATED
            try:
                remote_id = await client.create(session, target.sobject, fields)
            except SyncError as exc:
                return await self._failed(session, action, exc, record)
        else:
            action = SyncAction.UPDATED
            remote_id = resolution.remote_record_id
            try:
                await client.update(session, target.sobject, remote_id, fields)
            except SyncError as exc:
                return await self._failed(session, action, exc, record)

        return LiveOutcome(
            success=True,
            action=action,
            remote_id=remote_id,
            written_at=record.updated_at,
        )

    async def _failed(
        self,
        session: SalesforceSession,
        action: SyncAction,
        exc: SyncError,
        record: SyncRecord,
    ) -> LiveOutcome:
        if isinstance(exc, AuthenticationError):
            await self._sessions.invalidate(session)
        return LiveOutcome(
            success=False,
            action=action,
            error=exc.message,
            written_at=record.updated_at,
        )

    async def _simulate(
        self, record: SyncRecord, action: SyncAction, reason: str
    ) -> SimulatedOutcome:
        outcome = await self._simulation.simulate(record, action, reason)
        record_sync_outcome(record.kind.value, outcome.mode, action.value, True)
        return outcome

    async def _simulate_delete(
        self, kind: RecordKind, business_key: str, reason: str
    ) -> SimulatedOutcome:
        outcome = await self._simulation.simulate(None, SyncAction.DELETED, reason)
        logger.info("sync.delete_simulated", kind=kind.value, business_key=business_key)
        record_sync_outcome(kind.value, outcome.mode, SyncAction.DELETED.value, True)
        return outcome

    def _finish(self, kind: RecordKind, business_key: str, outcome: LiveOutcome) -> LiveOutcome:
        record_sync_outcome(kind.value, outcome.mode, outcome.action.value, outcome.success)
        if outcome.success:
            logger.info(
                "sync.record_synced",
                kind=kind.value,
                business_key=business_key,
                action=outcome.action.value,
                remote_id=outcome.remote_id,
            )
        else:
            logger.error(
                "sync.record_failed",
                kind=kind.value,
                business_key=business_key,
                action=outcome.action.value,
                error=outcome.error,
            )
        return outcome
