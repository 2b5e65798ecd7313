"""Salesforce session lifecycle.

SessionManager is the single owner of the authenticated session. It is
created once at startup and handed to the executor explicitly; there is no
module-level connection.

State machine:
    disconnected --ensure_session()--> connecting --ok--> connected
                                                  --fail--> disconnected
    connected --disconnect() / set_credentials() / invalidate()--> disconnected

All transitions run under one asyncio.Lock, so concurrent syncs that find the
manager disconnected share a single login instead of racing several.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from src.referral_hub.config import Settings, get_settings
from src.referral_hub.core.monitoring import set_session_connected
from src.referral_hub.sync.credentials import resolve_credentials
from src.referral_hub.sync.errors import SyncError
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.schemas import (
    CredentialSet,
    SalesforceSession,
    SalesforceUserSettings,
    SessionResult,
    SessionState,
)

logger = structlog.get_logger(__name__)


class SessionManager:
    """Owns the Salesforce session and the user credential tier.

    Args:
        client: SalesforceClient used for the OAuth login.
        settings: Application settings (environment and demo tiers).
        user_settings: Initially saved operator credentials, if any.
    """

    def __init__(
        self,
        client: SalesforceClient,
        settings: Settings | None = None,
        user_settings: SalesforceUserSettings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._user_settings = user_settings
        self._session: SalesforceSession | None = None
        self._state = SessionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._session_fingerprint: tuple[str, ...] | None = None
        self._last_error: str | None = None

    @property
    def client(self) -> SalesforceClient:
        return self._client

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED and self._session is not None

    @property
    def session(self) -> SalesforceSession | None:
        """The active session, or None. Callers must not cache it across awaits."""
        return self._session if self.is_connected else None

    def current_credentials(self) -> CredentialSet:
        """Resolve the credential set that the next login would use."""
        return resolve_credentials(self._user_settings, self._settings)

    @property
    def user_settings(self) -> SalesforceUserSettings | None:
        return self._user_settings

    def status(self) -> dict[str, Any]:
        """Non-secret snapshot of the session for health and settings endpoints."""
        credentials = self.current_credentials()
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "credential_source": credentials.source.value,
            "credentials_configured": credentials.is_complete(),
            "instance_url": self._session.instance_url if self.is_connected else None,
            "connected_at": (
                self._session.connected_at.isoformat() if self.is_connected else None
            ),
            "last_error": self._last_error,
        }

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def ensure_session(self) -> SessionResult:
        """Return a connected session result, logging in if needed.

        Never raises. A failed login leaves the manager disconnected and is
        reported through SessionResult.error.
        """
        async with self._lock:
            credentials = self.current_credentials()

            if self.is_connected and self._session_fingerprint == credentials.fingerprint():
                return SessionResult(
                    connected=True,
                    credential_source=credentials.source,
                    instance_url=self._session.instance_url,
                )

            self._drop_session()
            self._state = SessionState.CONNECTING
            logger.info(
                "salesforce.session_connecting",
                credential_source=credentials.source.value,
                login_url=credentials.login_url,
            )

            try:
                session = await self._client.login(credentials)
            except SyncError as exc:
                self._state = SessionState.DISCONNECTED
                self._last_error = exc.message
                set_session_connected(False)
                logger.warning(
                    "salesforce.session_failed",
                    credential_source=credentials.source.value,
                    error_type=type(exc).__name__,
                    error=exc.message,
                )
                return SessionResult(
                    connected=False,
                    credential_source=credentials.source,
                    error=exc.message,
                    error_type=type(exc).__name__,
                )
            except BaseException:
                # Cancelled or unexpected failure: never stay CONNECTING
                self._state = SessionState.DISCONNECTED
                raise

            self._session = session
            self._session_fingerprint = credentials.fingerprint()
            self._state = SessionState.CONNECTED
            self._last_error = None
            set_session_connected(True)
            logger.info(
                "salesforce.session_connected",
                credential_source=credentials.source.value,
                instance_url=session.instance_url,
            )
            return SessionResult(
                connected=True,
                credential_source=credentials.source,
                instance_url=session.instance_url,
            )

    async def set_credentials(self, user_settings: SalesforceUserSettings | None) -> None:
        """Replace the user credential tier and force re-authentication.

        Passing None removes the user tier so resolution falls back to the
        environment or demo credentials.
        """
        async with self._lock:
            self._user_settings = user_settings
            self._drop_session()
            logger.info(
                "salesforce.credentials_replaced",
                credential_source=self.current_credentials().source.value,
            )

    async def disconnect(self) -> None:
        """Drop the current session. Idempotent."""
        async with self._lock:
            was_connected = self.is_connected
            self._drop_session()
            if was_connected:
                logger.info("salesforce.session_disconnected")

    async def invalidate(self, session: SalesforceSession) -> None:
        """Drop `session` if it is still the active one (expired token seen).

        A session already replaced by a newer login is left alone.
        """
        async with self._lock:
            if self._session is session:
                self._drop_session()
                logger.warning("salesforce.session_invalidated")

    async def probe(self, user_settings: SalesforceUserSettings) -> SessionResult:
        """Try a login with candidate credentials without touching the active session."""
        credentials = resolve_credentials(user_settings, self._settings)
        try:
            session = await self._client.login(credentials)
        except SyncError as exc:
            logger.info(
                "salesforce.probe_failed",
                credential_source=credentials.source.value,
                error_type=type(exc).__name__,
            )
            return SessionResult(
                connected=False,
                credential_source=credentials.source,
                error=exc.message,
                error_type=type(exc).__name__,
            )
        return SessionResult(
            connected=True,
            credential_source=credentials.source,
            instance_url=session.instance_url,
        )

    def _drop_session(self) -> None:
        self._session = None
        self._session_fingerprint = None
        self._state = SessionState.DISCONNECTED
        set_session_connected(False)
