"""Salesforce settings endpoints.

Lets an operator save, inspect, test, and clear the user credential tier.
Saving only succeeds if a login with the submitted credentials works, so a
typo never replaces a working configuration. Secrets are never returned.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.referral_hub.api.deps import get_session_manager, get_settings_store
from src.referral_hub.sync.schemas import (
    DEFAULT_LOGIN_URL,
    SANDBOX_LOGIN_URL,
    SalesforceUserSettings,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/settings/salesforce", tags=["settings"])

MASK = "********"


# ── Schemas ──────────────────────────────────────────────────────────────────


class SalesforceSettingsRequest(BaseModel):
    """Request body for saving Salesforce credentials.

    Sending the mask value for a secret keeps the stored secret.
    """

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    security_token: str = ""
    is_sandbox: bool = False
    login_url: str | None = None
    client_id: str = ""
    client_secret: str = ""


class SalesforceSettingsResponse(BaseModel):
    configured: bool
    username: str = ""
    password: str = ""
    security_token: str = ""
    login_url: str = DEFAULT_LOGIN_URL
    is_sandbox: bool = False
    client_id: str = ""
    client_secret: str = ""
    updated_at: str | None = None
    credential_source: str


# ── Helpers ──────────────────────────────────────────────────────────────────


def _mask(value: str) -> str:
    return MASK if value else ""


def _to_response(saved: SalesforceUserSettings | None, credential_source: str) -> SalesforceSettingsResponse:
    if saved is None:
        return SalesforceSettingsResponse(configured=False, credential_source=credential_source)
    return SalesforceSettingsResponse(
        configured=True,
        username=saved.username,
        password=_mask(saved.password),
        security_token=_mask(saved.security_token),
        login_url=saved.login_url,
        is_sandbox=saved.login_url.rstrip("/") == SANDBOX_LOGIN_URL,
        client_id=saved.client_id,
        client_secret=_mask(saved.client_secret),
        updated_at=saved.updated_at.isoformat() if saved.updated_at else None,
        credential_source=credential_source,
    )


def _merge(body: SalesforceSettingsRequest, saved: SalesforceUserSettings | None) -> SalesforceUserSettings:
    """Build candidate settings, keeping stored secrets where the mask was sent back."""

    def keep(submitted: str, stored: str | None) -> str:
        if submitted == MASK:
            return stored or ""
        return submitted

    login_url = body.login_url or (SANDBOX_LOGIN_URL if body.is_sandbox else DEFAULT_LOGIN_URL)
    return SalesforceUserSettings(
        username=body.username.strip(),
        password=keep(body.password, saved.password if saved else None),
        security_token=keep(body.security_token, saved.security_token if saved else None),
        login_url=login_url,
        client_id=body.client_id,
        client_secret=keep(body.client_secret, saved.client_secret if saved else None),
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=SalesforceSettingsResponse)
async def get_salesforce_settings(request: Request) -> SalesforceSettingsResponse:
    """Return saved settings with secrets masked."""
    store = get_settings_store(request)
    manager = get_session_manager(request)
    return _to_response(store.load(), manager.current_credentials().source.value)


@router.post("", response_model=SalesforceSettingsResponse)
async def save_salesforce_settings(
    body: SalesforceSettingsRequest, request: Request
) -> SalesforceSettingsResponse:
    """Test the submitted credentials and save them if the login succeeds."""
    store = get_settings_store(request)
    manager = get_session_manager(request)

    candidate = _merge(body, store.load())
    if not candidate.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password is required",
        )

    result = await manager.probe(candidate)
    if not result.connected:
        logger.info("settings.salesforce_rejected", error_type=result.error_type)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Failed to connect to Salesforce with the provided credentials",
                "error": result.error,
            },
        )

    saved = store.save(candidate)
    await manager.set_credentials(saved)
    await manager.ensure_session()
    logger.info("settings.salesforce_saved", login_url=saved.login_url)
    return _to_response(saved, manager.current_credentials().source.value)


@router.delete("")
async def clear_salesforce_settings(request: Request) -> dict[str, Any]:
    """Remove saved settings and fall back to environment or demo credentials."""
    store = get_settings_store(request)
    manager = get_session_manager(request)

    removed = store.clear()
    await manager.set_credentials(None)
    await manager.disconnect()
    logger.info("settings.salesforce_cleared", removed=removed)
    return {"cleared": removed, "status": manager.status()}


@router.get("/status")
async def salesforce_status(request: Request) -> dict[str, Any]:
    """Current session state and credential tier (no secrets)."""
    manager = get_session_manager(request)
    return manager.status()


@router.post("/test")
async def test_salesforce_connection(request: Request) -> dict[str, Any]:
    """Connect with the active credentials and report the result."""
    manager = get_session_manager(request)
    result = await manager.ensure_session()
    return {
        "success": result.connected,
        "credential_source": result.credential_source.value if result.credential_source else None,
        "instance_url": result.instance_url,
        "error": result.error,
        "status": manager.status(),
    }
