"""
Token lifecycle management for QuickBooks connections.

Loads a tenant's stored connection, decides whether the access token is still
fresh, refreshes it through the Intuit OAuth endpoint when it is not, and
drives the connection status (connected -> needs_reauth on refresh failure).
Credentials are encrypted with TokenEncryption before every write.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from finsync.common.errors import (
    CredentialIntegrityError,
    NeedsReauthError,
    NoConnectionError,
)
from finsync.config.loader import QBO_DEFAULT_SCOPE, cfg
from finsync.db.models import QuickBooksConnection
from finsync.db.store import FinancialStore
from finsync.utils.crypto import TokenEncryption
from finsync.utils.oauth import OAuthManager, OAuthToken
from finsync.utils.time_windows import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_SKEW_SECONDS = 120


@dataclass(frozen=True, slots=True)
class AccessTokenResult:
    access_token: str
    realm_id: str


class TokenManager:
    """Resolves valid access tokens for tenants and manages their connections."""

    def __init__(
        self,
        store: FinancialStore,
        oauth: OAuthManager,
        cipher: TokenEncryption,
        skew_seconds: int | None = None,
    ):
        self.store = store
        self.oauth = oauth
        self.cipher = cipher
        if skew_seconds is None:
            skew_seconds = int(cfg("quickbooks.tokens.expiry_skew_seconds", DEFAULT_EXPIRY_SKEW_SECONDS))
        self.skew = timedelta(seconds=skew_seconds)

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def get_valid_access_token(self, tenant_id: str, force_refresh: bool = False) -> AccessTokenResult:
        """
        Return a usable access token and realm id for a tenant.

        Refreshes only when the stored expiry is within the skew window (or
        ``force_refresh`` is set).

        Raises:
            NoConnectionError: Tenant has no connected QuickBooks company
            NeedsReauthError: Connection needs re-authorization, or refresh failed
            CredentialIntegrityError: Connected row is missing a credential
            CipherError: Stored ciphertext is corrupted
        """
        connection = self._load_connected(tenant_id)

        access_token = self.cipher.decrypt(connection.access_token)
        refresh_token = self.cipher.decrypt(connection.refresh_token)
        if not access_token or not refresh_token:
            raise CredentialIntegrityError(
                f"QuickBooks connection for tenant {tenant_id} is missing a stored credential"
            )

        if not force_refresh and self._is_fresh(connection.access_expires_at):
            return AccessTokenResult(access_token=access_token, realm_id=connection.realm_id)

        return self._refresh(connection, refresh_token)

    def _load_connected(self, tenant_id: str) -> QuickBooksConnection:
        connection = self.store.get_connection(tenant_id)
        if connection is None or connection.status in ("disconnected", "pending", "error"):
            raise NoConnectionError(tenant_id)
        if connection.status == "needs_reauth":
            message = "QuickBooks connection needs re-authorization"
            if connection.last_refresh_error:
                message += f": {connection.last_refresh_error}"
            raise NeedsReauthError(message)
        return connection

    def _is_fresh(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return False
        return ensure_utc(expires_at) - utc_now() > self.skew

    def _refresh(self, connection: QuickBooksConnection, refresh_token: str) -> AccessTokenResult:
        tenant_id = connection.tenant_id
        logger.info(f"Refreshing QuickBooks access token for tenant {tenant_id}")

        # Intuit may rotate the refresh token, so an unpersisted refresh
        # leaves the stored one unusable.
        try:
            token = self.oauth.refresh_token(refresh_token)
            swapped = self.store.swap_connection_tokens(
                tenant_id, connection.access_expires_at, **self._refreshed_fields(tenant_id, token)
            )
        except Exception as e:
            logger.error(f"Token refresh failed for tenant {tenant_id}: {e}")
            self._mark_needs_reauth(tenant_id, str(e))
            raise NeedsReauthError(f"Token refresh failed: {e}") from e

        if swapped:
            logger.info(f"Refreshed QuickBooks access token for tenant {tenant_id}")
            return AccessTokenResult(access_token=token.access_token, realm_id=connection.realm_id)

        # Another caller refreshed first; use the credentials it stored.
        logger.info(f"Concurrent refresh detected for tenant {tenant_id}; using stored token")
        winner = self._load_connected(tenant_id)
        access_token = self.cipher.decrypt(winner.access_token)
        if not access_token:
            raise CredentialIntegrityError(
                f"QuickBooks connection for tenant {tenant_id} is missing a stored credential"
            )
        return AccessTokenResult(access_token=access_token, realm_id=winner.realm_id)

    def _refreshed_fields(self, tenant_id: str, token: OAuthToken) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "access_token": self.cipher.encrypt(token.access_token),
            "access_expires_at": token.expires_at,
            "status": "connected",
            "last_refresh_error": None,
        }
        if token.refresh_token:
            fields["refresh_token"] = self.cipher.encrypt(token.refresh_token)
        else:
            logger.warning(
                f"Refresh response for tenant {tenant_id} had no refresh_token; keeping the stored one"
            )
        if token.refresh_expires_at:
            fields["refresh_expires_at"] = token.refresh_expires_at
        return fields

    def _mark_needs_reauth(self, tenant_id: str, message: str):
        try:
            self.store.update_connection(
                tenant_id, status="needs_reauth", last_refresh_error=message
            )
        except Exception as e:
            logger.error(f"Could not record needs_reauth for tenant {tenant_id}: {e}")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        """Consent URL for connecting a QuickBooks company."""
        return self.oauth.get_authorization_url(state)

    def connect(self, tenant_id: str, code: str, realm_id: str) -> dict[str, Any]:
        """
        Complete the OAuth callback: exchange the code and store the connection.

        Raises:
            OAuthTokenError: Code exchange was rejected
            CredentialIntegrityError: Provider returned no refresh token
        """
        if not realm_id:
            raise CredentialIntegrityError("OAuth callback is missing the realmId")

        token: OAuthToken = self.oauth.exchange_code_for_token(code)
        if not token.refresh_token:
            raise CredentialIntegrityError("Token exchange returned no refresh token")

        self.store.save_connection(
            tenant_id=tenant_id,
            realm_id=realm_id,
            access_token=self.cipher.encrypt(token.access_token),
            refresh_token=self.cipher.encrypt(token.refresh_token),
            access_expires_at=token.expires_at,
            refresh_expires_at=token.refresh_expires_at,
            scope=token.scope or QBO_DEFAULT_SCOPE,
            status="connected",
        )
        logger.info(f"Connected QuickBooks company {realm_id} for tenant {tenant_id}")
        return self.connection_status(tenant_id)

    def disconnect(self, tenant_id: str) -> bool:
        """Delete the tenant's connection and sync state. Returns False if none existed."""
        deleted = self.store.delete_connection(tenant_id)
        if deleted:
            logger.info(f"Disconnected QuickBooks for tenant {tenant_id}")
        else:
            logger.info(f"No QuickBooks connection to disconnect for tenant {tenant_id}")
        return deleted

    def connection_status(self, tenant_id: str) -> dict[str, Any] | None:
        """Secret-free summary of a tenant's connection, or None."""
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            return None
        return {
            "tenant_id": connection.tenant_id,
            "realm_id": connection.realm_id,
            "status": connection.status,
            "connected": connection.status == "connected",
            "scope": connection.scope,
            "access_expires_at": ensure_utc(connection.access_expires_at),
            "refresh_expires_at": ensure_utc(connection.refresh_expires_at),
            "last_refresh_error": connection.last_refresh_error,
        }

    def ensure_encrypted_credentials(self, tenant_id: str) -> bool:
        """
        Re-encrypt legacy plaintext credentials for a tenant.

        Returns True when a stored value was rewritten.
        """
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            return False

        fields = {}
        for column in ("access_token", "refresh_token"):
            value = getattr(connection, column)
            if value and not self.cipher.is_encrypted(value):
                fields[column] = self.cipher.encrypt(value)

        if not fields:
            return False

        self.store.update_connection(tenant_id, **fields)
        logger.info(f"Re-encrypted {len(fields)} legacy credential(s) for tenant {tenant_id}")
        return True
