"""Pydantic schemas for the Salesforce record sync layer.

Defines:
- CredentialSource / CredentialSet / SalesforceUserSettings: credential tiers
- SessionState / SalesforceSession / SessionResult: session lifecycle
- SyncMode / SyncAction / SyncStatus: outcome vocabulary
- LiveOutcome / SimulatedOutcome / SyncOutcome: tagged sync outcome
- RecordKind / SyncRecord / UpsertResolution: what gets synced and how it matched
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
SANDBOX_LOGIN_URL = "https://test.salesforce.com"


# ── Credentials ─────────────────────────────────────────────────────────────


class CredentialSource(str, Enum):
    """Which tier a credential set was resolved from."""

    USER_SETTINGS = "user-settings"
    ENVIRONMENT = "environment"
    DEFAULT_DEMO = "default-demo"


class SalesforceUserSettings(BaseModel):
    """Credentials entered by an operator through the settings endpoint."""

    username: str = ""
    password: str = ""
    security_token: str = ""
    login_url: str = DEFAULT_LOGIN_URL
    client_id: str = ""
    client_secret: str = ""
    updated_at: datetime | None = None


class CredentialSet(BaseModel):
    """A fully resolved set of Salesforce login credentials.

    Secrets are excluded from repr so a credential set can be logged safely.
    """

    username: str = ""
    password: str = Field(default="", repr=False)
    security_token: str = Field(default="", repr=False)
    login_url: str = DEFAULT_LOGIN_URL
    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    source: CredentialSource = CredentialSource.DEFAULT_DEMO

    def is_complete(self) -> bool:
        """Return True if the set carries enough to attempt a login."""
        return bool(self.username and self.password)

    def fingerprint(self) -> tuple[str, ...]:
        """Identity of the credential set, used to detect replacement."""
        return (
            self.source.value,
            self.username,
            self.password,
            self.security_token,
            self.login_url,
            self.client_id,
            self.client_secret,
        )


# ── Session ─────────────────────────────────────────────────────────────────


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SalesforceSession(BaseModel):
    """An authenticated Salesforce session. Owned by SessionManager."""

    access_token: str = Field(repr=False)
    instance_url: str
    api_version: str = "v58.0"
    credential_source: CredentialSource
    connected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def connected(self) -> bool:
        return bool(self.access_token and self.instance_url)


class SessionResult(BaseModel):
    """Result of SessionManager.ensure_session().

    Never raised as an exception: a failed login is data, not control flow.
    """

    connected: bool
    credential_source: CredentialSource | None = None
    instance_url: str | None = None
    error: str | None = None
    error_type: str | None = None


# ── Outcomes ────────────────────────────────────────────────────────────────


class SyncMode(str, Enum):
    LIVE = "live"
    SIMULATION = "simulation"


class SyncAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    NOOP = "noop"


class SyncStatus(str, Enum):
    """Persisted sync state of a local record."""

    UNSYNCED = "unsynced"
    SYNCED = "synced"
    FAILED = "failed"
    SIMULATED = "simulated"


class LiveOutcome(BaseModel):
    """Outcome of a real Salesforce attempt (successful or not)."""

    mode: Literal["live"] = "live"
    success: bool
    remote_id: str | None = None
    action: SyncAction
    error: str | None = None
    written_at: datetime | None = None

    @property
    def sync_status(self) -> SyncStatus:
        return SyncStatus.SYNCED if self.success else SyncStatus.FAILED


class SimulatedOutcome(BaseModel):
    """Outcome produced when no real attempt could be made."""

    mode: Literal["simulation"] = "simulation"
    success: Literal[True] = True
    remote_id: str
    action: SyncAction
    reason: str
    written_at: datetime | None = None

    @property
    def sync_status(self) -> SyncStatus:
        return SyncStatus.SIMULATED


SyncOutcome = Annotated[Union[LiveOutcome, SimulatedOutcome], Field(discriminator="mode")]


# ── Records ─────────────────────────────────────────────────────────────────


class RecordKind(str, Enum):
    PATIENT = "patient"
    REFERRAL = "referral"


class SyncRecord(BaseModel):
    """Snapshot of a committed local record, as handed to the sync layer.

    Attributes:
        kind: Which local table the record lives in.
        local_id: Local primary key (never sent to Salesforce for matching).
        remote_id: Salesforce ID recorded by a previous successful sync, if any.
        fields: Local field values, keyed by local column name.
        updated_at: Commit timestamp of the write this snapshot reflects.
    """

    kind: RecordKind
    local_id: int
    remote_id: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime


class UpsertResolution(BaseModel):
    """Result of looking a business key up in Salesforce."""

    exists: bool
    remote_record_id: str | None = None
    candidate_ids: list[str] = Field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.candidate_ids) > 1
