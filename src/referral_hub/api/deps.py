"""FastAPI dependency helpers for services initialised at startup.

Services live on app.state (set by the lifespan in main.py). Endpoints read
them through these helpers so a failed initialisation surfaces as 503
instead of an AttributeError.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status


def get_record_repository(request: Request) -> Any:
    """Retrieve RecordRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "record_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Record storage not initialized",
        )
    return repo


def get_sync_coordinator(request: Request) -> Any | None:
    """Retrieve SyncCoordinator from app.state.

    Returns None rather than raising: local writes proceed without sync.
    """
    return getattr(request.app.state, "sync_coordinator", None)


def get_session_manager(request: Request) -> Any:
    """Retrieve SessionManager from app.state, 503 if not available."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Salesforce sync not initialized",
        )
    return manager


def get_settings_store(request: Request) -> Any:
    """Retrieve SalesforceSettingsStore from app.state, 503 if not available."""
    store = getattr(request.app.state, "settings_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Salesforce settings storage not initialized",
        )
    return store
