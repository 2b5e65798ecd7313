"""Sync metadata attached to record API responses.

The sync block is informational only: a create or update answers 201/200
once the local commit succeeds, whatever the remote outcome was.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel

from src.referral_hub.sync.schemas import LiveOutcome, SimulatedOutcome, SyncRecord

logger = structlog.get_logger(__name__)


class SyncInfo(BaseModel):
    """Outcome of the sync triggered by this request."""

    mode: str | None = None
    status: str
    action: str | None = None
    remote_id: str | None = None
    error: str | None = None
    reason: str | None = None
    pending: bool = False


def sync_info_from(
    outcome: LiveOutcome | SimulatedOutcome | None,
    fallback_status: str,
    pending: bool = False,
) -> SyncInfo:
    """Build the response sync block.

    Args:
        outcome: Outcome returned by the coordinator, or None.
        fallback_status: Stored sync_status to report when there is no outcome.
        pending: True if the sync was scheduled in the background.
    """
    if outcome is None:
        return SyncInfo(status=fallback_status, pending=pending)
    return SyncInfo(
        mode=outcome.mode,
        status=outcome.sync_status.value,
        action=outcome.action.value,
        remote_id=outcome.remote_id,
        error=getattr(outcome, "error", None),
        reason=getattr(outcome, "reason", None),
    )


async def run_committed_sync(
    coordinator: Any | None, record: SyncRecord
) -> tuple[LiveOutcome | SimulatedOutcome | None, bool]:
    """Hand a committed record to the coordinator.

    Returns:
        (outcome, pending). Never raises: the local write has already happened.
    """
    if coordinator is None:
        return None, False
    try:
        outcome = await coordinator.on_record_committed(record)
    except Exception as exc:
        logger.error(
            "sync.hook_failed",
            kind=record.kind.value,
            local_id=record.local_id,
            error=str(exc),
            exc_info=True,
        )
        return None, False
    return outcome, outcome is None and coordinator.background
