"""Async HTTP client for the Salesforce OAuth and REST APIs.

Provides SalesforceClient, a thin stateless wrapper: it never holds a session
itself. SessionManager owns the session and passes it into each call.

Error translation (httpx -> sync errors):
- Connection failures, timeouts, 5xx          -> NetworkError
- 400/401 on the token endpoint               -> AuthenticationError
- 401 on a REST call (expired/revoked token)  -> AuthenticationError
- Other 4xx on a REST call                    -> RemoteValidationError
- 2xx body that is not a JSON object          -> AuthenticationError (login),
                                                 NetworkError (query),
                                                 RemoteValidationError (create)

Idempotent calls (query, update, delete) retry NetworkError with tenacity
exponential backoff. Create is never retried at this level: a timed-out
POST may still have created the record, and a blind retry would duplicate it.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.referral_hub.core.monitoring import track_salesforce_call
from src.referral_hub.sync.errors import (
    AuthenticationError,
    CredentialError,
    NetworkError,
    RemoteValidationError,
)
from src.referral_hub.sync.schemas import CredentialSet, SalesforceSession

logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> tuple[str, list[dict[str, Any]]]:
    """Extract Salesforce's own error text from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return (response.text or f"HTTP {response.status_code}", [])

    if isinstance(payload, list) and payload:
        errors = [e for e in payload if isinstance(e, dict)]
        message = "; ".join(str(e.get("message", "")) for e in errors if e.get("message"))
        return (message or f"HTTP {response.status_code}", errors)
    if isinstance(payload, dict):
        message = payload.get("error_description") or payload.get("message") or payload.get("error")
        return (str(message or f"HTTP {response.status_code}"), [payload])
    return (f"HTTP {response.status_code}", [])


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Parse a successful response body; None if it is not a JSON object."""
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class SalesforceClient:
    """Async client for Salesforce login, SOQL queries and sObject writes.

    Args:
        api_version: REST API version segment (e.g. "v58.0").
        timeout: Per-request timeout in seconds.
        retry_attempts: Attempts for idempotent calls on NetworkError.
        retry_wait: tenacity wait strategy between attempts.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_version: str = "v58.0",
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_version = api_version
        self._timeout = timeout
        self._retry_attempts = max(1, retry_attempts)
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._transport = transport

    @property
    def api_version(self) -> str:
        return self._api_version

    def _client(self, headers: dict[str, str] | None = None) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout and transport."""
        return httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _rest_url(self, session: SalesforceSession, path: str) -> str:
        return f"{session.instance_url.rstrip('/')}/services/data/{session.api_version}/{path}"

    @staticmethod
    def _auth_headers(session: SalesforceSession) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {session.access_token}",
            "Content-Type": "application/json",
        }

    async def _with_retry(self, operation, *args: Any) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(NetworkError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                return await operation(*args)
        return None

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        session: SalesforceSession,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one REST request and translate failures into sync errors."""
        async with track_salesforce_call(operation):
            try:
                async with self._client(self._auth_headers(session)) as client:
                    response = await client.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                raise NetworkError(
                    f"Salesforce {operation} timed out", {"operation": operation}
                ) from exc
            except httpx.TransportError as exc:
                raise NetworkError(
                    f"Salesforce {operation} failed: {exc}", {"operation": operation}
                ) from exc

        if response.status_code < 400:
            return response

        message, errors = _error_message(response)
        if response.status_code == 401:
            raise AuthenticationError(
                message,
                {"operation": operation, "errors": errors},
                status_code=401,
            )
        if response.status_code >= 500:
            raise NetworkError(
                f"Salesforce {operation} returned {response.status_code}: {message}",
                {"operation": operation, "status_code": response.status_code},
            )
        raise RemoteValidationError(message, response.status_code, errors)

    # ── Authentication ──────────────────────────────────────────────────────

    async def login(self, credentials: CredentialSet) -> SalesforceSession:
        """Run the OAuth 2.0 username-password flow.

        POST {login_url}/services/oauth2/token with grant_type=password.
        The security token, when present, is appended to the password.

        Args:
            credentials: Resolved credential set.

        Returns:
            SalesforceSession with access_token and instance_url.

        Raises:
            CredentialError: The set is missing username or password.
            AuthenticationError: Salesforce rejected the credentials.
            NetworkError: Salesforce could not be reached.
        """
        if not credentials.is_complete():
            raise CredentialError(
                "Salesforce username and password are not configured",
                {"credential_source": credentials.source.value},
            )

        token_url = f"{credentials.login_url.rstrip('/')}/services/oauth2/token"
        form = {
            "grant_type": "password",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "username": credentials.username,
            "password": f"{credentials.password}{credentials.security_token}",
        }

        async with track_salesforce_call("login"):
            try:
                async with self._client() as client:
                    response = await client.post(token_url, data=form)
            except httpx.TimeoutException as exc:
                raise NetworkError(
                    "Salesforce login timed out", {"login_url": credentials.login_url}
                ) from exc
            except httpx.TransportError as exc:
                raise NetworkError(
                    f"Salesforce login failed: {exc}", {"login_url": credentials.login_url}
                ) from exc

        if response.status_code >= 500:
            raise NetworkError(
                f"Salesforce login returned {response.status_code}",
                {"login_url": credentials.login_url},
            )
        if response.status_code >= 400:
            message, _ = _error_message(response)
            raise AuthenticationError(
                message,
                {"credential_source": credentials.source.value},
                status_code=response.status_code,
            )

        data = _json_object(response)
        if data is None:
            logger.warning(
                "salesforce.login_malformed_response",
                status_code=response.status_code,
                content_type=response.headers.get("content-type", ""),
            )
            raise AuthenticationError(
                "Salesforce token response is not a JSON object",
                {"credential_source": credentials.source.value, "login_url": credentials.login_url},
                status_code=response.status_code,
            )
        access_token = data.get("access_token")
        instance_url = data.get("instance_url")
        if not access_token or not instance_url:
            raise AuthenticationError(
                "Salesforce token response is missing access_token or instance_url",
                {"credential_source": credentials.source.value},
            )

        return SalesforceSession(
            access_token=access_token,
            instance_url=instance_url,
            api_version=self._api_version,
            credential_source=credentials.source,
        )

    # ── SOQL ────────────────────────────────────────────────────────────────

    async def query(self, session: SalesforceSession, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query and return its records.

        Args:
            session: Active session.
            soql: Complete SOQL statement.

        Returns:
            The `records` array of the query response.
        """

        async def _query() -> list[dict[str, Any]]:
            response = await self._send(
                "query", "GET", self._rest_url(session, "query"), session, params={"q": soql}
            )
            data = _json_object(response)
            if data is None or not isinstance(data.get("records", []), list):
                raise NetworkError(
                    "Salesforce query response is not a JSON object with records",
                    {"status_code": response.status_code},
                )
            return list(data.get("records", []))

        return await self._with_retry(_query)

    # ── sObject writes ──────────────────────────────────────────────────────

    async def create(
        self, session: SalesforceSession, sobject: str, fields: dict[str, Any]
    ) -> str:
        """Create a record. Returns the new Salesforce ID."""
        response = await self._send(
            "create",
            "POST",
            self._rest_url(session, f"sobjects/{sobject}"),
            session,
            json=fields,
        )
        data = _json_object(response)
        if data is None:
            raise RemoteValidationError(
                "Salesforce create response is not a JSON object", response.status_code
            )
        if not data.get("success", True) or not data.get("id"):
            message = "; ".join(str(e.get("message", e)) for e in data.get("errors", []))
            raise RemoteValidationError(
                message or "Salesforce did not return a record ID",
                response.status_code,
                data.get("errors", []),
            )
        logger.info("salesforce.record_created", sobject=sobject, remote_id=data["id"])
        return data["id"]

    async def update(
        self,
        session: SalesforceSession,
        sobject: str,
        record_id: str,
        fields: dict[str, Any],
    ) -> None:
        """Update fields of an existing record (PATCH, 204 No Content)."""

        async def _update() -> None:
            await self._send(
                "update",
                "PATCH",
                self._rest_url(session, f"sobjects/{sobject}/{record_id}"),
                session,
                json=fields,
            )

        await self._with_retry(_update)
        logger.info("salesforce.record_updated", sobject=sobject, remote_id=record_id)

    async def delete(self, session: SalesforceSession, sobject: str, record_id: str) -> None:
        """Delete a record (DELETE, 204 No Content)."""

        async def _delete() -> None:
            await self._send(
                "delete",
                "DELETE",
                self._rest_url(session, f"sobjects/{sobject}/{record_id}"),
                session,
            )

        await self._with_retry(_delete)
        logger.info("salesforce.record_deleted", sobject=sobject, remote_id=record_id)
