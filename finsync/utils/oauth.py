"""
OAuth utilities for the Intuit (QuickBooks Online) authorization server.

Provides authorization URL generation, code exchange and refresh-token
exchange. Persistence of the resulting tokens lives in finsync.utils.tokens.
"""

import logging
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import requests
from requests.exceptions import RequestException

from finsync.common.http import request_with_retry
from finsync.config.loader import QuickBooksConfig
from finsync.utils.time_windows import utc_now

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_TOKEN_TTL = 3600


class OAuthTokenError(Exception):
    """Error with OAuth token operations."""

    def __init__(self, message: str, status_code: int | None = None, error: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class OAuthToken:
    """Token pair returned by the authorization server."""

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        refresh_expires_at: datetime | None = None,
        token_type: str = "bearer",
        scope: str | None = None,
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at
        self.refresh_expires_at = refresh_expires_at
        self.token_type = token_type
        self.scope = scope

    @property
    def authorization_header(self) -> str:
        """Get authorization header value."""
        return f"Bearer {self.access_token}"

    @classmethod
    def from_response(cls, token_data: dict[str, Any]) -> "OAuthToken":
        """
        Build a token from the token endpoint's JSON body.

        A blank or missing refresh_token is kept as None: Intuit may omit it
        on refresh, which is not credential loss.
        """
        now = utc_now()

        try:
            expires_in = int(token_data.get("expires_in") or DEFAULT_ACCESS_TOKEN_TTL)
        except (TypeError, ValueError):
            expires_in = DEFAULT_ACCESS_TOKEN_TTL

        refresh_expires_at = None
        if token_data.get("x_refresh_token_expires_in"):
            try:
                refresh_expires_at = now + timedelta(
                    seconds=int(token_data["x_refresh_token_expires_in"])
                )
            except (TypeError, ValueError):
                refresh_expires_at = None

        refresh_token = token_data.get("refresh_token")
        if refresh_token is not None and not str(refresh_token).strip():
            refresh_token = None

        return cls(
            access_token=token_data["access_token"],
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            refresh_expires_at=refresh_expires_at,
            token_type=token_data.get("token_type", "bearer"),
            scope=token_data.get("scope"),
        )


class OAuthManager:
    """Talks to the Intuit OAuth 2.0 endpoints."""

    def __init__(self, config: QuickBooksConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def get_authorization_url(self, state: str) -> str:
        """Generate the consent URL a user visits to connect a company."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "state": state,
        }
        return f"{self.config.authorization_url}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> OAuthToken:
        """Exchange authorization code for an access/refresh token pair."""
        token = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
            },
            action="Token exchange",
        )
        logger.info("Successfully exchanged authorization code for access token")
        return token

    def refresh_token(self, refresh_token: str) -> OAuthToken:
        """Exchange a refresh token for a new access token."""
        if not refresh_token:
            raise OAuthTokenError("No refresh token available")

        token = self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            action="Token refresh",
        )
        logger.info("Successfully refreshed access token")
        return token

    def _token_request(self, data: dict[str, str], action: str) -> OAuthToken:
        # Intuit uses HTTP Basic Auth with client_id:client_secret
        auth = (self.config.client_id, self.config.client_secret)

        try:
            response = request_with_retry(
                self.session,
                "POST",
                self.config.token_url,
                data=data,
                auth=auth,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.config.timeout,
            )
        except RequestException as e:
            logger.error(f"{action} request failed: {e}")
            raise OAuthTokenError(f"{action} failed: {e}") from e

        if response.status_code >= 400:
            error, description = _parse_oauth_error(response)
            message = f"{action} failed (HTTP {response.status_code})"
            if error:
                message += f": {error}"
            if description:
                message += f" - {description}"
            logger.error(message)
            raise OAuthTokenError(message, status_code=response.status_code, error=error)

        try:
            return OAuthToken.from_response(response.json())
        except (KeyError, ValueError) as e:
            raise OAuthTokenError(f"{action} failed: malformed token response") from e


def _parse_oauth_error(response: requests.Response) -> tuple[str | None, str | None]:
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    return body.get("error"), body.get("error_description")
