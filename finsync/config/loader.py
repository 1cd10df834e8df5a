"""
Configuration loader for the finsync connector.

Loads tunables from a YAML file and secrets from environment variables,
with dot-notation access to nested keys.
"""

import base64
import binascii
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from finsync.common.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "app.yaml"

QBO_SANDBOX_BASE_URL = "https://sandbox-quickbooks.api.intuit.com"
QBO_PRODUCTION_BASE_URL = "https://quickbooks.api.intuit.com"
QBO_AUTHORIZATION_URL = "https://appcenter.intuit.com/connect/oauth2"
QBO_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QBO_DEFAULT_SCOPE = "com.intuit.quickbooks.accounting"

# Global configuration cache
_config_cache: dict[str, Any] | None = None


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load configuration from YAML file with environment variable support."""
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    load_dotenv()

    config_file = Path(config_path or os.getenv("FINSYNC_CONFIG") or DEFAULT_CONFIG_PATH)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_file) as f:
        config = yaml.safe_load(f) or {}

    _config_cache = config
    return config


def cfg(key: str, default: Any = None) -> Any:
    """
    Get configuration value using dot notation.

    Examples:
        cfg("global.log_level", "INFO")
        cfg("quickbooks.http.max_rate_limit_retries", 3)
    """
    config = load_config()

    if "." not in key:
        return config.get(key, default)

    value = config
    try:
        for k in key.split("."):
            value = value[k]
        return value
    except (KeyError, TypeError):
        return default


def env(key: str, default: str | None = None) -> str | None:
    """Get environment variable with optional default."""
    return os.getenv(key, default)


def get_required_env(key: str) -> str:
    """
    Get required environment variable or raise error.

    Raises:
        ConfigurationError: If environment variable is not set
    """
    value = env(key)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {key}")
    return value


def get_database_url() -> str:
    """Get database URL from environment."""
    return get_required_env("DATABASE_URL")


def get_encryption_key() -> bytes:
    """
    Return the 32-byte credential encryption key.

    QBO_TOKEN_ENCRYPTION_KEY must be the base64 encoding of exactly 32 bytes.
    """
    raw = get_required_env("QBO_TOKEN_ENCRYPTION_KEY")
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError("QBO_TOKEN_ENCRYPTION_KEY is not valid base64") from e
    if len(key) != 32:
        raise ConfigurationError(
            "QBO_TOKEN_ENCRYPTION_KEY must be base64 encoding of 32 bytes (AES-256-GCM key)"
        )
    return key


def get_automation_secret() -> str:
    """Secret for scheduled triggers. Accepts QBO_REFRESH_CRON_SECRET or CRON_SECRET."""
    value = env("QBO_REFRESH_CRON_SECRET") or env("CRON_SECRET")
    if not value:
        raise ConfigurationError(
            "Missing required environment variable: QBO_REFRESH_CRON_SECRET or CRON_SECRET"
        )
    return value


def get_webhook_verifier_token() -> str | None:
    """Webhook verifier token from the Intuit developer portal, if configured."""
    return env("QBO_WEBHOOK_VERIFIER_TOKEN")


class QuickBooksConfig(BaseModel):
    """QuickBooks OAuth and API configuration."""

    client_id: str = Field(..., description="Intuit app client id")
    client_secret: str = Field(..., description="Intuit app client secret")
    redirect_uri: str = Field(..., description="OAuth redirect URI registered with Intuit")
    environment: str = Field(default="production", description="sandbox or production")
    authorization_url: str = Field(default=QBO_AUTHORIZATION_URL)
    token_url: str = Field(default=QBO_TOKEN_URL)
    scope: str = Field(default=QBO_DEFAULT_SCOPE)
    accounting_method: str = Field(default="Cash", description="Cash or Accrual")
    minor_version: str | None = Field(default=None)
    timeout: float = Field(default=30)

    @property
    def api_base_url(self) -> str:
        """QuickBooks API base URL (sandbox vs production). No trailing slash."""
        if self.environment == "sandbox":
            return QBO_SANDBOX_BASE_URL
        return QBO_PRODUCTION_BASE_URL

    @classmethod
    def from_env(cls) -> "QuickBooksConfig":
        """Load configuration from environment variables and app.yaml tunables."""
        load_dotenv()

        environment = env("QBO_ENVIRONMENT") or cfg("quickbooks.environment", "production")
        if environment != "sandbox":
            environment = "production"

        minor_version = env("QBO_MINORVERSION") or cfg("quickbooks.minor_version")

        return cls(
            client_id=get_required_env("QBO_CLIENT_ID"),
            client_secret=get_required_env("QBO_CLIENT_SECRET"),
            redirect_uri=get_required_env("QBO_REDIRECT_URI"),
            environment=environment,
            accounting_method=cfg("quickbooks.accounting_method", "Cash"),
            minor_version=str(minor_version) if minor_version else None,
            timeout=float(cfg("quickbooks.http.timeout", 30)),
        )


def validate_config() -> None:
    """Validate configuration and required environment variables."""
    errors = []

    for check in (get_database_url, get_encryption_key, QuickBooksConfig.from_env):
        try:
            check()
        except ConfigurationError as e:
            errors.append(str(e))

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        )


def reload_config() -> None:
    """Force reload of configuration cache."""
    global _config_cache
    _config_cache = None
