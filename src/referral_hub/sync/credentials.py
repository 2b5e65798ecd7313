"""Salesforce credential resolution across three tiers.

Priority, highest first:
1. user-settings -- saved through the settings endpoint (non-empty username)
2. environment   -- SALESFORCE_USERNAME and SALESFORCE_PASSWORD both set
3. default-demo  -- SALESFORCE_DEMO_* values, always produced even when empty

Resolution is pure and never raises. An incomplete demo set is caught later,
at login time, as a CredentialError.
"""

from __future__ import annotations

from src.referral_hub.config import Settings, get_settings
from src.referral_hub.sync.schemas import (
    DEFAULT_LOGIN_URL,
    CredentialSet,
    CredentialSource,
    SalesforceUserSettings,
)


def resolve_credentials(
    user_settings: SalesforceUserSettings | None = None,
    settings: Settings | None = None,
) -> CredentialSet:
    """Pick the highest-priority usable credential set.

    Args:
        user_settings: Operator-saved credentials, or None if nothing is saved.
        settings: Application settings. Defaults to get_settings().

    Returns:
        CredentialSet tagged with the tier it came from.
    """
    settings = settings or get_settings()

    if user_settings is not None and user_settings.username.strip():
        return CredentialSet(
            username=user_settings.username.strip(),
            password=user_settings.password,
            security_token=user_settings.security_token,
            login_url=user_settings.login_url or DEFAULT_LOGIN_URL,
            client_id=user_settings.client_id or settings.SALESFORCE_CLIENT_ID,
            client_secret=user_settings.client_secret or settings.SALESFORCE_CLIENT_SECRET,
            source=CredentialSource.USER_SETTINGS,
        )

    if settings.SALESFORCE_USERNAME and settings.SALESFORCE_PASSWORD:
        return CredentialSet(
            username=settings.SALESFORCE_USERNAME,
            password=settings.SALESFORCE_PASSWORD,
            security_token=settings.SALESFORCE_SECURITY_TOKEN,
            login_url=settings.SALESFORCE_LOGIN_URL or DEFAULT_LOGIN_URL,
            client_id=settings.SALESFORCE_CLIENT_ID,
            client_secret=settings.SALESFORCE_CLIENT_SECRET,
            source=CredentialSource.ENVIRONMENT,
        )

    return CredentialSet(
        username=settings.SALESFORCE_DEMO_USERNAME,
        password=settings.SALESFORCE_DEMO_PASSWORD,
        security_token=settings.SALESFORCE_DEMO_SECURITY_TOKEN,
        login_url=settings.SALESFORCE_DEMO_LOGIN_URL or DEFAULT_LOGIN_URL,
        client_id=settings.SALESFORCE_CLIENT_ID,
        client_secret=settings.SALESFORCE_CLIENT_SECRET,
        source=CredentialSource.DEFAULT_DEMO,
    )
