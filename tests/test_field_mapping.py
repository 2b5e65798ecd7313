"""Tests for local-to-Salesforce field mapping and lookup SOQL."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from src.referral_hub.records.schemas import PatientRead, ReferralRead, ReferralUrgency
from src.referral_hub.sync.field_mapping import (
    SYNC_TARGETS,
    build_lookup_soql,
    escape_soql,
    to_salesforce_fields,
)
from src.referral_hub.sync.schemas import RecordKind, SyncRecord

NOW = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def _make_referral(**overrides) -> ReferralRead:
    defaults = {
        "id": 7,
        "referral_number": "REF-202501-0007",
        "patient_id": 3,
        "patient_name": "Ada Lovelace",
        "condition": "Suspected glaucoma",
        "urgency": ReferralUrgency.URGENT,
        "practice_name": "High Street Opticians",
        "date_received": date(2025, 1, 15),
        "remote_id": "a0B5g0000000001AAA",
        "updated_at": NOW,
    }
    defaults.update(overrides)
    return ReferralRead(**defaults)


class TestReferralMapping:
    def test_fields_are_mapped(self):
        payload = to_salesforce_fields(_make_referral().to_sync_record())

        assert payload["Referral_Number__c"] == "REF-202501-0007"
        assert payload["Patient_Name__c"] == "Ada Lovelace"
        assert payload["Urgency__c"] == "urgent"
        assert payload["Status__c"] == "received"
        assert payload["Date_Received__c"] == "2025-01-15"
        assert payload["Optician_Practice__c"] == "High Street Opticians"

    def test_local_identity_is_never_sent(self):
        payload = to_salesforce_fields(_make_referral().to_sync_record())

        assert "Id" not in payload
        assert 7 not in payload.values()
        assert "a0B5g0000000001AAA" not in payload.values()

    def test_none_values_are_sent_as_null(self):
        payload = to_salesforce_fields(_make_referral(clinical_notes=None).to_sync_record())

        assert payload["Clinical_Notes__c"] is None

    def test_explicit_business_key_is_written(self):
        record = _make_referral().to_sync_record()

        payload = to_salesforce_fields(record, SYNC_TARGETS[RecordKind.REFERRAL], "EXT-42")

        assert payload["Referral_Number__c"] == "EXT-42"

    def test_missing_business_key_raises(self):
        record = SyncRecord(kind=RecordKind.REFERRAL, local_id=1, fields={}, updated_at=NOW)

        with pytest.raises(ValueError):
            to_salesforce_fields(record)


class TestPatientMapping:
    def test_patient_payload(self):
        patient = PatientRead(
            id=3,
            patient_number="PAT-0A1B2C3D4E",
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            phone="0100",
            date_of_birth=date(1815, 12, 10),
            updated_at=NOW,
        )

        payload = to_salesforce_fields(patient.to_sync_record())

        assert payload["Referral_Number__c"] == "PAT-0A1B2C3D4E"
        assert payload["Name"] == "Ada Lovelace"
        assert payload["Date_of_Birth__c"] == "1815-12-10"
        assert payload["Source__c"] == "Patient Management System"
        assert payload["Status__c"] == "active"


class TestSoql:
    def test_escape(self):
        assert escape_soql("O'Brien") == "O\\'Brien"
        assert escape_soql("a\\b") == "a\\\\b"

    def test_lookup_query(self):
        soql = build_lookup_soql(SYNC_TARGETS[RecordKind.REFERRAL], "REF-202501-0007")

        assert soql == (
            "SELECT Id FROM Referral__c WHERE Referral_Number__c = 'REF-202501-0007' "
            "ORDER BY CreatedDate ASC"
        )
