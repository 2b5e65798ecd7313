"""Patient and referral records -- the local system of record.

Provides SQLAlchemy models (PatientModel, ReferralModel), Pydantic schemas
for create/update/read, and RecordRepository for async CRUD and sync
outcome persistence.
"""
