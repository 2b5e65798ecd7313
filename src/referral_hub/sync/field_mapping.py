"""Salesforce field mappings for synced record kinds.

Defines:
- SyncTarget: where a local record kind lands in Salesforce and how it is keyed
- PATIENT_FIELD_MAP / REFERRAL_FIELD_MAP: local column -> Salesforce field
- SYNC_TARGETS: RecordKind -> SyncTarget
- to_salesforce_fields(): Converts a local field dict into a Salesforce payload
- escape_soql() / build_lookup_soql(): Business-key lookup query

Both kinds land on the Referral__c custom object and are correlated by the
Referral_Number__c field, which carries the local business key. The local
primary key is never sent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from src.referral_hub.sync.schemas import RecordKind, SyncRecord

REFERRAL_SOBJECT = "Referral__c"
BUSINESS_KEY_FIELD = "Referral_Number__c"


# ── Field Maps ─────────────────────────────────────────────────────────────

PATIENT_FIELD_MAP: dict[str, str] = {
    "first_name": "First_Name__c",
    "last_name": "Last_Name__c",
    "email": "Email__c",
    "phone": "Phone__c",
    "date_of_birth": "Date_of_Birth__c",
    "address": "Address__c",
    "emergency_contact": "Emergency_Contact__c",
    "medical_history": "Medical_History__c",
    "allergies": "Allergies__c",
    "medications": "Current_Medications__c",
    "status": "Status__c",
}

REFERRAL_FIELD_MAP: dict[str, str] = {
    "patient_name": "Patient_Name__c",
    "condition": "Condition__c",
    "urgency": "Urgency__c",
    "status": "Status__c",
    "clinical_notes": "Clinical_Notes__c",
    "date_received": "Date_Received__c",
    "practice_name": "Optician_Practice__c",
}


@dataclass(frozen=True)
class SyncTarget:
    """Where one local record kind is mirrored in Salesforce.

    Attributes:
        kind: Local record kind.
        sobject: Salesforce object API name.
        key_field: Salesforce field holding the business key.
        local_key_field: Local column holding the business key.
        field_map: Local column -> Salesforce field.
        constant_fields: Fields sent with every write regardless of the record.
    """

    kind: RecordKind
    sobject: str
    key_field: str
    local_key_field: str
    field_map: dict[str, str]
    constant_fields: dict[str, Any] = field(default_factory=dict)

    def business_key(self, record: SyncRecord) -> str:
        """Extract the business key from a record snapshot."""
        value = record.fields.get(self.local_key_field)
        if not value:
            raise ValueError(
                f"{self.kind.value} {record.local_id} has no {self.local_key_field}"
            )
        return str(value)


SYNC_TARGETS: dict[RecordKind, SyncTarget] = {
    RecordKind.PATIENT: SyncTarget(
        kind=RecordKind.PATIENT,
        sobject=REFERRAL_SOBJECT,
        key_field=BUSINESS_KEY_FIELD,
        local_key_field="patient_number",
        field_map=PATIENT_FIELD_MAP,
        constant_fields={"Source__c": "Patient Management System"},
    ),
    RecordKind.REFERRAL: SyncTarget(
        kind=RecordKind.REFERRAL,
        sobject=REFERRAL_SOBJECT,
        key_field=BUSINESS_KEY_FIELD,
        local_key_field="referral_number",
        field_map=REFERRAL_FIELD_MAP,
    ),
}


def get_target(kind: RecordKind) -> SyncTarget:
    return SYNC_TARGETS[kind]


# ── Conversion ─────────────────────────────────────────────────────────────


def _to_salesforce_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def to_salesforce_fields(
    record: SyncRecord,
    target: SyncTarget | None = None,
    business_key: str | None = None,
) -> dict[str, Any]:
    """Convert a local record snapshot into a Salesforce sObject payload.

    Mapped fields absent from the snapshot are omitted; fields present with a
    None value are sent as null so Salesforce clears them on update.

    Args:
        record: Local record snapshot.
        target: Optional explicit target. Defaults to SYNC_TARGETS[record.kind].
        business_key: Key written to the target key field. Defaults to the
            record's own key column, and must match the key used for lookup.

    Returns:
        Dict suitable as a JSON body for sObject create/update.
    """
    target = target or get_target(record.kind)
    payload: dict[str, Any] = {target.key_field: business_key or target.business_key(record)}

    for local_name, sf_name in target.field_map.items():
        if local_name in record.fields:
            payload[sf_name] = _to_salesforce_value(record.fields[local_name])

    if record.kind == RecordKind.PATIENT:
        full_name = " ".join(
            part for part in (record.fields.get("first_name"), record.fields.get("last_name")) if part
        )
        if full_name:
            payload["Name"] = full_name

    payload.update(target.constant_fields)
    return payload


# ── SOQL ───────────────────────────────────────────────────────────────────


def escape_soql(value: str) -> str:
    """Escape a value for use inside a single-quoted SOQL string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_lookup_soql(target: SyncTarget, business_key: str) -> str:
    """Build the business-key lookup query, oldest match first."""
    return (
        f"SELECT Id FROM {target.sobject} "
        f"WHERE {target.key_field} = '{escape_soql(business_key)}' "
        f"ORDER BY CreatedDate ASC"
    )
