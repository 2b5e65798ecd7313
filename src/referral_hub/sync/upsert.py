"""Create-vs-update resolution by business key.

Local and remote stores share no primary key, so every write first asks
Salesforce whether a record with the same business key already exists.
"""

from __future__ import annotations

import structlog

from src.referral_hub.sync.errors import ReconciliationAmbiguity
from src.referral_hub.sync.field_mapping import SyncTarget, build_lookup_soql
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.schemas import SalesforceSession, UpsertResolution

logger = structlog.get_logger(__name__)


class UpsertResolver:
    """Looks up remote records by business key. Never creates anything.

    Args:
        client: SalesforceClient used for the SOQL query.
        strict: Raise ReconciliationAmbiguity when the key matches more than once.
    """

    def __init__(self, client: SalesforceClient, strict: bool = False) -> None:
        self._client = client
        self._strict = strict

    async def resolve(
        self,
        session: SalesforceSession,
        target: SyncTarget,
        business_key: str,
    ) -> UpsertResolution:
        """Decide whether `business_key` already exists remotely.

        Args:
            session: Active Salesforce session.
            target: Object and key field to query.
            business_key: Local business key value.

        Returns:
            UpsertResolution; with several matches the oldest record is chosen.

        Raises:
            SyncError: The query failed (propagated to the executor).
            ReconciliationAmbiguity: Several matches and strict mode is on.
        """
        records = await self._client.query(session, build_lookup_soql(target, business_key))
        candidate_ids = [r["Id"] for r in records if r.get("Id")]

        if not candidate_ids:
            return UpsertResolution(exists=False)

        if len(candidate_ids) > 1:
            logger.warning(
                "sync.reconciliation_ambiguity",
                sobject=target.sobject,
                business_key=business_key,
                candidate_ids=candidate_ids,
                chosen=candidate_ids[0],
            )
            if self._strict:
                raise ReconciliationAmbiguity(business_key, candidate_ids)

        return UpsertResolution(
            exists=True,
            remote_record_id=candidate_ids[0],
            candidate_ids=candidate_ids,
        )
