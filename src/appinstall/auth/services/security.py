"""Security utilities for installation flows and credential storage.

Provides cryptographically secure state generation, masking
of identifiers for logs, and AES-GCM sealing of stored secrets.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


def generate_state() -> str:
    """Generate cryptographically secure state parameter.

    The state correlates the installation callback with the pending install
    that started it.

    Returns:
        Cryptographically secure random state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def mask_identifier(value: str | None) -> str:
    """Mask a credential-like identifier for logging."""
    if not value:
        return "<none>"
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-2:]}"


def _decode_key(raw: str) -> bytes:
    """Accept a hex or base64 encoded AES key.

    Hex is tried first: a string of hex digits is also valid base64 but
    decodes to different bytes.
    """
    if len(raw) % 2 == 0 and all(c in string.hexdigits for c in raw):
        key = bytes.fromhex(raw)
    else:
        try:
            key = base64.b64decode(raw, validate=True)
        except ValueError as e:
            raise ValueError("Encryption key must be hex or base64 encoded") from e
    if len(key) not in (16, 24, 32):
        raise ValueError("Encryption key must decode to 16, 24 or 32 bytes")
    return key


class SecretBox:
    """Seals and opens stored secrets with AES-GCM.

    A box built without a key passes values through unchanged, so stores can
    run unencrypted in development.
    """

    def __init__(self, key: str | bytes | None = None):
        if isinstance(key, str):
            key = _decode_key(key)
        self._key = key
        self._aead = AESGCM(key) if key else None

    @property
    def enabled(self) -> bool:
        return self._aead is not None

    def seal(self, plaintext: str) -> str:
        """Encrypt a string. Output is base64(nonce | ciphertext | tag)."""
        if self._aead is None:
            return plaintext
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def open(self, sealed: str) -> str:
        """Decrypt a value produced by ``seal``.

        Raises:
            ValueError: If the value was tampered with or sealed with another key
        """
        if self._aead is None:
            return sealed
        raw = base64.urlsafe_b64decode(sealed.encode("ascii"))
        try:
            plaintext = self._aead.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise ValueError("Sealed value failed authentication") from e
        return plaintext.decode("utf-8")

    def blind_index(self, value: str) -> str:
        """Deterministic lookup key for a secret value.

        HMAC-SHA256 under the box key, so rows can be found by instance id
        without storing it in the clear.
        """
        if self._key is None:
            return value
        return hmac.new(self._key, value.encode("utf-8"), hashlib.sha256).hexdigest()
