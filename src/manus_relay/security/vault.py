"""Credential vault: AES-256-GCM encryption of stored API keys.

Blob layout (lowercase hex): nonce (16 bytes) | tag (16 bytes) | ciphertext.
Segment boundaries are positional, there is no length prefix.
"""

from __future__ import annotations

import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from manus_relay.errors import AuthenticationError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 16
TAG_LENGTH = 16
# Development-only secret; production must configure MANUS_RELAY_ENCRYPTION_SECRET.
FALLBACK_SECRET = "fallback-secret-key-for-dev"

_HEADER_HEX_LENGTH = (NONCE_LENGTH + TAG_LENGTH) * 2


def derive_key(secret: str) -> bytes:
    """SHA-256 of the secret, used directly as the 256-bit AES key."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


class CredentialVault:
    """Encrypt and decrypt API keys with a key derived from one shared secret."""

    def __init__(self, secret: str | None = None) -> None:
        if not secret:
            logger.warning(
                "vault event=fallback_secret reason=no_secret_configured "
                "hint=set MANUS_RELAY_ENCRYPTION_SECRET outside development"
            )
            secret = FALLBACK_SECRET
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext.
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return (nonce + tag + ciphertext).hex()

    def decrypt(self, blob: str) -> str:
        if len(blob) < _HEADER_HEX_LENGTH:
            raise AuthenticationError("Encrypted value is too short")
        try:
            nonce = bytes.fromhex(blob[: NONCE_LENGTH * 2])
            tag = bytes.fromhex(blob[NONCE_LENGTH * 2 : _HEADER_HEX_LENGTH])
            ciphertext = bytes.fromhex(blob[_HEADER_HEX_LENGTH:])
        except (ValueError, binascii.Error) as exc:
            raise AuthenticationError("Encrypted value is not valid hex") from exc

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationError("Encrypted value failed authentication") from exc
        return plaintext.decode("utf-8")


def build_vault(secret: str) -> CredentialVault:
    return CredentialVault(secret or None)
