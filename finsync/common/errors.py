"""
Error taxonomy for the QuickBooks connector and sync engine.

Callers branch on the class, never on message text:
- ConfigurationError: missing or malformed secret/setting (fatal, not retried)
- NoConnectionError: tenant never connected (or was disconnected)
- NeedsReauthError: refresh failed or provider returned 401; a human must re-authorize
- RateLimitedError: 429 responses exhausted the retry budget
- QuickBooksApiError: any other non-2xx provider response
- DerivationError: metric extraction failed for a period (non-fatal to a sync)
"""

from typing import Any


class FinSyncError(Exception):
    """Base exception for connector and sync errors."""

    pass


class ConfigurationError(FinSyncError):
    """Required configuration is missing or malformed."""

    pass


class CipherError(FinSyncError):
    """Encrypted credential payload is malformed or failed authentication."""

    pass


class CredentialIntegrityError(FinSyncError):
    """Stored connection is missing a credential it must have."""

    pass


class NoConnectionError(FinSyncError):
    """Tenant has no usable QuickBooks connection."""

    def __init__(self, tenant_id: str, message: str | None = None):
        self.tenant_id = tenant_id
        super().__init__(
            message
            or "No QuickBooks connection for this tenant. Please connect QuickBooks first."
        )


class NeedsReauthError(FinSyncError):
    """Connection must be re-authorized by a user (HTTP 401 equivalent)."""

    status = 401

    def __init__(self, message: str = "QuickBooks connection needs re-authorization"):
        super().__init__(message)


class QuickBooksApiError(FinSyncError):
    """Non-2xx response from the QuickBooks API with the parsed error envelope."""

    def __init__(
        self,
        message: str,
        status: int,
        code: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
        }


class RateLimitedError(QuickBooksApiError):
    """HTTP 429 from the provider; raised to the caller once retries are exhausted."""

    def __init__(
        self,
        message: str = "Rate limit exceeded (429)",
        code: str | None = None,
        detail: str | None = None,
        retry_after: float | None = None,
        attempts: int = 0,
        intuit_tid: str | None = None,
    ):
        super().__init__(message, 429, code=code, detail=detail)
        self.retry_after = retry_after
        self.attempts = attempts
        self.intuit_tid = intuit_tid


class DerivationError(FinSyncError):
    """Metrics could not be derived or saved for a period."""

    pass
