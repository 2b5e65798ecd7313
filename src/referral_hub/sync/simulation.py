"""Simulation fallback for when Salesforce cannot be reached.

Produces clearly labelled synthetic outcomes so callers always receive a
well-formed result. Simulated IDs look like ``SIM_1736942400000_00a7k3qz9``:
epoch milliseconds, then a 4-char base36 process sequence and 5 random base36
characters. They can never be mistaken for a 15/18-character Salesforce ID.
"""

from __future__ import annotations

import asyncio
import itertools
import re
import secrets
import string
import time

import structlog

from src.referral_hub.sync.schemas import SimulatedOutcome, SyncAction, SyncRecord

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_SEQUENCE_SPACE = 36**4
_SIMULATED_ID = re.compile(r"^SIM_\d{13}_[0-9a-z]{9}$")
MAX_SIMULATION_DELAY_SECONDS = 5.0

_sequence = itertools.count()


def _base36(value: int, width: int) -> str:
    digits = []
    for _ in range(width):
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_simulated_id() -> str:
    """Return a new simulated ID, unique within this process."""
    millis = int(time.time() * 1000)
    seq = _base36(next(_sequence) % _SEQUENCE_SPACE, 4)
    tail = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"SIM_{millis:013d}_{seq}{tail}"


def is_simulated_id(remote_id: str | None) -> bool:
    """Return True if `remote_id` was produced by the simulation fallback."""
    return bool(remote_id) and bool(_SIMULATED_ID.match(remote_id))


class SimulationFallback:
    """Builds simulated outcomes. Never raises.

    Args:
        delay_seconds: Artificial latency before answering, capped at
            MAX_SIMULATION_DELAY_SECONDS. Zero disables it.
    """

    def __init__(self, delay_seconds: float = 1.0) -> None:
        self._delay = min(max(delay_seconds, 0.0), MAX_SIMULATION_DELAY_SECONDS)

    async def simulate(
        self,
        record: SyncRecord | None,
        action: SyncAction,
        reason: str,
    ) -> SimulatedOutcome:
        """Produce a simulated outcome for `record`.

        Args:
            record: The record that could not be synced (None for deletes).
            action: What the live sync would have done.
            reason: Why the live path was not taken.

        Returns:
            SimulatedOutcome with a fresh simulated remote_id.
        """
        if self._delay:
            await asyncio.sleep(self._delay)

        outcome = SimulatedOutcome(
            remote_id=generate_simulated_id(),
            action=action,
            reason=reason,
            written_at=record.updated_at if record is not None else None,
        )
        logger.info(
            "sync.simulated",
            kind=record.kind.value if record is not None else None,
            local_id=record.local_id if record is not None else None,
            action=action.value,
            remote_id=outcome.remote_id,
            reason=reason,
        )
        return outcome
