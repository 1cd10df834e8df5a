"""
Tests for the Intuit OAuth exchange.
"""

from datetime import timedelta
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import pytest
from requests.exceptions import ConnectionError

from finsync.utils.oauth import OAuthManager, OAuthToken, OAuthTokenError
from finsync.utils.time_windows import utc_now


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.headers = {"Content-Type": "application/json"}
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def manager(qb_config, session):
    return OAuthManager(qb_config, session=session)


class TestAuthorizationUrl:
    """Test consent URL generation."""

    def test_url_parameters(self, manager, qb_config):
        url = manager.get_authorization_url("state-123")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert url.startswith("https://appcenter.intuit.com/connect/oauth2?")
        assert params["client_id"] == ["test_client_id"]
        assert params["redirect_uri"] == [qb_config.redirect_uri]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["com.intuit.quickbooks.accounting"]
        assert params["state"] == ["state-123"]


class TestTokenResponse:
    """Test parsing of token endpoint bodies."""

    def test_from_response(self):
        before = utc_now()
        token = OAuthToken.from_response(
            {
                "access_token": "a",
                "refresh_token": "r",
                "expires_in": 3600,
                "x_refresh_token_expires_in": 8726400,
                "token_type": "bearer",
            }
        )

        assert token.access_token == "a"
        assert token.refresh_token == "r"
        assert token.expires_at >= before + timedelta(seconds=3600)
        assert token.refresh_expires_at >= before + timedelta(seconds=8726400)
        assert token.authorization_header == "Bearer a"

    def test_missing_refresh_token_is_none(self):
        token = OAuthToken.from_response({"access_token": "a", "refresh_token": "  "})

        assert token.refresh_token is None
        assert token.refresh_expires_at is None

    def test_default_expiry(self):
        before = utc_now()
        token = OAuthToken.from_response({"access_token": "a"})

        assert token.expires_at >= before + timedelta(seconds=3600)


class TestTokenExchange:
    """Test code exchange and refresh against a mocked session."""

    def test_refresh_uses_basic_auth(self, manager, session, qb_config):
        session.request.return_value = _response(
            body={"access_token": "new-a", "refresh_token": "new-r", "expires_in": 3600}
        )

        token = manager.refresh_token("old-r")

        assert token.access_token == "new-a"
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == qb_config.token_url
        assert kwargs["auth"] == ("test_client_id", "test_client_secret")
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "old-r"}

    def test_exchange_code(self, manager, session, qb_config):
        session.request.return_value = _response(
            body={"access_token": "a", "refresh_token": "r", "expires_in": 3600}
        )

        manager.exchange_code_for_token("auth-code")

        data = session.request.call_args.kwargs["data"]
        assert data == {
            "grant_type": "authorization_code",
            "code": "auth-code",
            "redirect_uri": qb_config.redirect_uri,
        }

    def test_refresh_rejected(self, manager, session):
        """An OAuth error body is surfaced with status and error code."""
        session.request.return_value = _response(
            status_code=400,
            body={"error": "invalid_grant", "error_description": "Token expired"},
        )

        with pytest.raises(OAuthTokenError) as exc_info:
            manager.refresh_token("stale")

        assert exc_info.value.status_code == 400
        assert exc_info.value.error == "invalid_grant"
        assert "invalid_grant" in str(exc_info.value)
        assert "stale" not in str(exc_info.value)

    def test_refresh_without_token(self, manager, session):
        with pytest.raises(OAuthTokenError):
            manager.refresh_token("")
        session.request.assert_not_called()

    def test_malformed_body(self, manager, session):
        session.request.return_value = _response(body={"token_type": "bearer"})

        with pytest.raises(OAuthTokenError):
            manager.refresh_token("r")

    def test_transport_error_after_retries(self, manager, session, monkeypatch):
        """Connection errors are retried, then wrapped."""
        monkeypatch.setattr("time.sleep", lambda seconds: None)
        session.request.side_effect = ConnectionError("connection refused")

        with pytest.raises(OAuthTokenError):
            manager.refresh_token("r")

        assert session.request.call_count == 3
