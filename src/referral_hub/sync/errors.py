"""Exception hierarchy for the Salesforce record sync layer.

Failures split into two families that the executor treats differently:
- Before a remote write is attempted (CredentialError, AuthenticationError,
  NetworkError during login or lookup): the sync degrades to simulation.
- During a remote write (RemoteValidationError, NetworkError on
  create/update/delete): the sync is reported as a failed live attempt.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for all sync layer errors.

    Attributes:
        message: Human-readable description, safe to surface to API callers.
        details: Structured context for logging (never contains secrets).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class CredentialError(SyncError):
    """Raised when the resolved credential set cannot be used to log in."""


class AuthenticationError(SyncError):
    """Raised when Salesforce rejects a login or an access token."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, details)


class NetworkError(SyncError):
    """Raised on connection failures, timeouts, or unexpected 5xx responses."""


class RemoteValidationError(SyncError):
    """Raised when Salesforce rejects a record write.

    The message is Salesforce's own error text, copied verbatim so it can be
    shown to operators unchanged.

    Attributes:
        status_code: HTTP status of the rejected request.
        errors: Parsed Salesforce error payload (list of {message, errorCode, fields}).
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message, {"status_code": status_code, "errors": self.errors})


class ReconciliationAmbiguity(SyncError):
    """Raised in strict mode when a business key matches several remote records.

    Attributes:
        business_key: The key that matched more than once.
        candidate_ids: All matching remote IDs, oldest first.
    """

    def __init__(self, business_key: str, candidate_ids: list[str]) -> None:
        self.business_key = business_key
        self.candidate_ids = candidate_ids
        super().__init__(
            f"Business key '{business_key}' matches {len(candidate_ids)} remote records",
            {"business_key": business_key, "candidate_ids": candidate_ids},
        )
