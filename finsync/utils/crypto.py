"""
Token Encryption Module

Encrypts OAuth credentials with AES-256-GCM before they are written to the
database and decrypts them when an API call needs them.

Stored format: ``enc:v1:<base64(nonce | tag | ciphertext)>``. The version
prefix makes algorithm migration detectable; values without the prefix are
legacy plaintext and are returned unchanged by ``decrypt``.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from finsync.common.errors import CipherError, ConfigurationError
from finsync.config.loader import get_automation_secret, get_encryption_key, get_webhook_verifier_token

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:v1:"
NONCE_SIZE = 12
TAG_SIZE = 16


class TokenEncryption:
    """
    Encrypt and decrypt OAuth tokens for secure storage in database.

    Each call to ``encrypt`` draws a fresh random nonce, so encrypting the
    same token twice yields different ciphertexts.
    """

    def __init__(self, key: bytes | None = None):
        """
        Initialize the cipher.

        Args:
            key: 32-byte AES key. Read from QBO_TOKEN_ENCRYPTION_KEY when omitted.

        Raises:
            ConfigurationError: If the key is absent or not 32 bytes
        """
        if key is None:
            key = get_encryption_key()
        if len(key) != 32:
            raise ConfigurationError("Token encryption key must be exactly 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, token: str) -> str:
        """
        Encrypt a token for database storage.

        Args:
            token: Plain text token to encrypt

        Returns:
            Tagged, base64-encoded payload suitable for a TEXT column
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, token.encode("utf-8"), None)
        # AESGCM appends the tag; the stored layout puts it before the ciphertext.
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        packed = base64.b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{ENCRYPTED_PREFIX}{packed}"

    def decrypt(self, value: str | None) -> str:
        """
        Decrypt a token from database.

        Untagged values are legacy plaintext and pass through unchanged.

        Raises:
            CipherError: If a tagged payload is malformed or fails authentication
        """
        if not value:
            return ""
        if not value.startswith(ENCRYPTED_PREFIX):
            return value

        try:
            packed = base64.b64decode(value[len(ENCRYPTED_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise CipherError("Invalid encrypted token payload") from e

        if len(packed) < NONCE_SIZE + TAG_SIZE + 1:
            raise CipherError("Invalid encrypted token payload")

        nonce = packed[:NONCE_SIZE]
        tag = packed[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = packed[NONCE_SIZE + TAG_SIZE:]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise CipherError("Encrypted token failed authentication") from e

        return plaintext.decode("utf-8")

    @staticmethod
    def is_encrypted(value: str | None) -> bool:
        """Check whether a stored value carries the encrypted-format tag."""
        return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


def safe_equal(a: str, b: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def verify_webhook_signature(
    payload: bytes | str, signature: str, verifier_token: str | None = None
) -> bool:
    """
    Verify an Intuit webhook ``intuit-signature`` header.

    The signature is the base64 HMAC-SHA256 of the raw request body keyed
    with the app's verifier token, which defaults to QBO_WEBHOOK_VERIFIER_TOKEN.
    """
    if verifier_token is None:
        verifier_token = get_webhook_verifier_token()
        if not verifier_token:
            logger.warning("QBO_WEBHOOK_VERIFIER_TOKEN is not set; rejecting webhook")
            return False
    if not signature or not verifier_token:
        return False
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    digest = hmac.new(verifier_token.encode("utf-8"), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return safe_equal(expected, signature)


def verify_automation_secret(provided: str | None, expected: str | None = None) -> bool:
    """
    Check the secret presented by a scheduled trigger.

    ``expected`` defaults to QBO_REFRESH_CRON_SECRET / CRON_SECRET.

    Raises:
        ConfigurationError: If no secret is configured
    """
    if expected is None:
        expected = get_automation_secret()
    if not provided:
        return False
    return safe_equal(provided, expected)
