"""Unit tests for SalesforceClient request building and error translation.

All traffic goes through httpx.MockTransport -- no network.
"""

from __future__ import annotations

import httpx
import pytest
from tenacity import wait_none

from src.referral_hub.sync.errors import (
    AuthenticationError,
    CredentialError,
    NetworkError,
    RemoteValidationError,
)
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.schemas import CredentialSet, CredentialSource, SalesforceSession


def _make_credentials(**overrides) -> CredentialSet:
    defaults = {
        "username": "integration@example.com",
        "password": "s3cret",
        "security_token": "",
        "client_id": "client-id",
        "client_secret": "client-secret",
        "source": CredentialSource.ENVIRONMENT,
    }
    defaults.update(overrides)
    return CredentialSet(**defaults)


async def _connected(client: SalesforceClient) -> SalesforceSession:
    return await client.login(_make_credentials())


class TestLogin:
    async def test_login_returns_session(self, salesforce_client, fake_salesforce):
        session = await salesforce_client.login(_make_credentials())

        assert session.connected is True
        assert session.instance_url == "https://example.my.salesforce.com"
        assert session.credential_source == CredentialSource.ENVIRONMENT
        assert fake_salesforce.count("login") == 1

    async def test_security_token_is_appended_to_password(self, salesforce_client, fake_salesforce):
        fake_salesforce.valid_passwords = {"s3cretTOKEN123"}

        session = await salesforce_client.login(_make_credentials(security_token="TOKEN123"))

        assert session.connected is True

    async def test_incomplete_credentials_raise_credential_error(self, salesforce_client, fake_salesforce):
        with pytest.raises(CredentialError):
            await salesforce_client.login(_make_credentials(username="", password=""))
        assert fake_salesforce.count("login") == 0

    async def test_rejected_login_raises_authentication_error(self, salesforce_client):
        with pytest.raises(AuthenticationError) as exc_info:
            await salesforce_client.login(_make_credentials(password="wrong"))
        assert exc_info.value.message == "authentication failure"
        assert exc_info.value.status_code == 400

    async def test_unreachable_login_raises_network_error(self, salesforce_client, fake_salesforce):
        fake_salesforce.reachable = False

        with pytest.raises(NetworkError):
            await salesforce_client.login(_make_credentials())

    async def test_html_token_response_raises_authentication_error(self, salesforce_client, fake_salesforce):
        fake_salesforce.malformed = {"login"}

        with pytest.raises(AuthenticationError) as exc_info:
            await salesforce_client.login(_make_credentials())
        assert exc_info.value.status_code == 200
        assert "not a JSON object" in exc_info.value.message


class TestRestCalls:
    async def test_query_returns_records(self, salesforce_client, fake_salesforce):
        remote_id = fake_salesforce.seed("REF-202501-0001")
        session = await _connected(salesforce_client)

        records = await salesforce_client.query(
            session, "SELECT Id FROM Referral__c WHERE Referral_Number__c = 'REF-202501-0001'"
        )

        assert [r["Id"] for r in records] == [remote_id]

    async def test_create_returns_new_id(self, salesforce_client, fake_salesforce):
        session = await _connected(salesforce_client)

        remote_id = await salesforce_client.create(
            session, "Referral__c", {"Referral_Number__c": "REF-202501-0002"}
        )

        assert fake_salesforce.records[remote_id]["Referral_Number__c"] == "REF-202501-0002"

    async def test_validation_error_message_is_verbatim(self, salesforce_client, fake_salesforce):
        fake_salesforce.create_error = "Urgency__c: bad value for restricted picklist field: soon"
        session = await _connected(salesforce_client)

        with pytest.raises(RemoteValidationError) as exc_info:
            await salesforce_client.create(session, "Referral__c", {"Referral_Number__c": "REF-1"})

        assert exc_info.value.message == "Urgency__c: bad value for restricted picklist field: soon"
        assert exc_info.value.status_code == 400
        assert exc_info.value.errors[0]["errorCode"] == "FIELD_CUSTOM_VALIDATION_EXCEPTION"

    async def test_expired_token_raises_authentication_error(self, salesforce_client, fake_salesforce):
        fake_salesforce.query_status = 401
        session = await _connected(salesforce_client)

        with pytest.raises(AuthenticationError) as exc_info:
            await salesforce_client.query(session, "SELECT Id FROM Referral__c")
        assert exc_info.value.status_code == 401

    async def test_server_error_raises_network_error(self, salesforce_client, fake_salesforce):
        fake_salesforce.query_status = 503
        session = await _connected(salesforce_client)

        with pytest.raises(NetworkError):
            await salesforce_client.query(session, "SELECT Id FROM Referral__c")

    async def test_update_of_deleted_record_is_validation_error(self, salesforce_client):
        session = await _connected(salesforce_client)

        with pytest.raises(RemoteValidationError) as exc_info:
            await salesforce_client.update(session, "Referral__c", "a0B000000000000AAA", {"Status__c": "x"})
        assert exc_info.value.status_code == 404

    async def test_html_query_response_raises_network_error(self, salesforce_client, fake_salesforce):
        session = await _connected(salesforce_client)
        fake_salesforce.malformed = {"query"}

        with pytest.raises(NetworkError):
            await salesforce_client.query(session, "SELECT Id FROM Referral__c")

    async def test_html_create_response_raises_validation_error(self, salesforce_client, fake_salesforce):
        session = await _connected(salesforce_client)
        fake_salesforce.malformed = {"create"}

        with pytest.raises(RemoteValidationError) as exc_info:
            await salesforce_client.create(session, "Referral__c", {"Referral_Number__c": "REF-1"})
        assert exc_info.value.status_code == 200


class TestRetry:
    async def test_query_retries_transient_failure(self, fake_salesforce):
        attempts = {"query": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/query"):
                attempts["query"] += 1
                if attempts["query"] == 1:
                    raise httpx.ReadTimeout("timed out", request=request)
            return fake_salesforce.handler(request)

        client = SalesforceClient(
            retry_attempts=3,
            retry_wait=wait_none(),
            transport=httpx.MockTransport(flaky),
        )
        session = await client.login(_make_credentials())

        records = await client.query(session, "SELECT Id FROM Referral__c WHERE Referral_Number__c = 'X'")

        assert records == []
        assert attempts["query"] == 2

    async def test_create_is_never_retried(self, fake_salesforce):
        attempts = {"create": 0}

        def timeout_on_create(request: httpx.Request) -> httpx.Response:
            if request.method == "POST" and request.url.path.endswith("/sobjects/Referral__c"):
                attempts["create"] += 1
                raise httpx.ReadTimeout("timed out", request=request)
            return fake_salesforce.handler(request)

        client = SalesforceClient(
            retry_attempts=3,
            retry_wait=wait_none(),
            transport=httpx.MockTransport(timeout_on_create),
        )
        session = await client.login(_make_credentials())

        with pytest.raises(NetworkError):
            await client.create(session, "Referral__c", {"Referral_Number__c": "REF-1"})
        assert attempts["create"] == 1
