"""Salesforce record sync -- mirrors committed local records into Salesforce.

Provides:
- resolve_credentials: three-tier credential resolution
- SessionManager: owner of the authenticated Salesforce session
- UpsertResolver: create-vs-update decision by business key
- SyncExecutor: one live sync attempt, with simulation fallback
- SimulationFallback: labelled synthetic outcomes when Salesforce is unreachable
- SyncCoordinator: post-commit hook that orders attempts and persists outcomes

Architecture: PostgreSQL is always the system of record. Salesforce is a
mirror; its failures never fail or roll back a local write.
"""

from src.referral_hub.sync.coordinator import SyncCoordinator
from src.referral_hub.sync.credentials import resolve_credentials
from src.referral_hub.sync.executor import SyncExecutor
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.session import SessionManager
from src.referral_hub.sync.simulation import SimulationFallback, is_simulated_id
from src.referral_hub.sync.upsert import UpsertResolver

__all__ = [
    "SalesforceClient",
    "SessionManager",
    "SimulationFallback",
    "SyncCoordinator",
    "SyncExecutor",
    "UpsertResolver",
    "is_simulated_id",
    "resolve_credentials",
]
