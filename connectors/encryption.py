"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM (``AESGCM`` from the ``cryptography`` library) with a
static 32-byte key loaded from ``config.encryption_key``
(env var: ``ENCRYPTION_KEY``, 64 hex characters).  Generate a key with::

    python -c "import secrets; print(secrets.token_hex(32))"

Wire format: three colon-separated hex segments, in this order::

    <iv>:<auth tag>:<ciphertext>

The IV is 16 random bytes, fresh for every call.  The tag is always
16 bytes; anything else is rejected before the cipher runs.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from connectors.errors import DecryptionError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
_SEPARATOR = ":"


class TokenCipher:
    """Authenticated encryption of token strings with a single static key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str) -> "TokenCipher":
        if len(key_hex) != KEY_LENGTH * 2:
            raise ValueError("Encryption key must be 64 hex characters")
        return cls(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> str:
        """Seal ``plaintext`` and return ``iv:tag:ciphertext`` (hex)."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        body, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return _SEPARATOR.join((iv.hex(), tag.hex(), body.hex()))

    def decrypt(self, ciphertext: str) -> str:
        """
        Open a value produced by :meth:`encrypt`.

        Raises ``DecryptionError`` on malformed input, a tag of unexpected
        length, or a failed integrity check.
        """
        parts = ciphertext.split(_SEPARATOR)
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted data format")

        try:
            iv, tag, body = (bytes.fromhex(p) for p in parts)
        except ValueError:
            raise DecryptionError("Invalid encrypted data format") from None

        if len(iv) != IV_LENGTH:
            raise DecryptionError("Invalid initialization vector length")
        if len(tag) != TAG_LENGTH:
            raise DecryptionError("Invalid authentication tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, body + tag, None)
        except InvalidTag:
            raise DecryptionError("Authentication tag verification failed") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted payload is not valid UTF-8") from None


_cipher: Optional[TokenCipher] = None


def get_token_cipher() -> TokenCipher:
    """Lazy-initialise the process-wide cipher once from settings."""
    global _cipher
    if _cipher is None:
        from config.settings import config

        _cipher = TokenCipher.from_hex(config.encryption_key)
        logger.info("Token encryption enabled (AES-256-GCM)")
    return _cipher
