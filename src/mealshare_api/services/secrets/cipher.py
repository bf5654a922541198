"""AES-256-GCM envelope encryption for GET device credentials."""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mealshare_api.core.settings import settings


ENVELOPE_VERSION = "v1"
KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


class SecretCipherError(RuntimeError):
    """Base exception for credential vault failures."""


class ConfigurationError(SecretCipherError):
    """Raised when the encryption key is missing or malformed."""


class MalformedEnvelopeError(SecretCipherError):
    """Raised when an envelope is not a well-formed ``v1`` payload."""


class AuthenticationFailureError(SecretCipherError):
    """Raised when the GCM tag does not verify (corrupt or tampered secret)."""


def _b64decode(value: str, *, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEnvelopeError(f"Envelope {field} is not valid base64") from exc


class SecretCipher:
    """Encrypts small secrets into ``v1:nonce:tag:ciphertext`` envelopes.

    The key is resolved on every call rather than at construction so that a
    missing ``CREDENTIALS_ENCRYPTION_KEY`` surfaces as ``ConfigurationError``
    at first use. Instances hold no mutable state and can be shared.
    """

    def __init__(self, key_b64: str | None = None) -> None:
        self._key_b64 = key_b64

    def _key(self) -> bytes:
        raw = self._key_b64 if self._key_b64 is not None else settings.credentials_encryption_key
        if not raw:
            raise ConfigurationError("CREDENTIALS_ENCRYPTION_KEY is not configured")
        try:
            key = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("CREDENTIALS_ENCRYPTION_KEY is not valid base64") from exc
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"CREDENTIALS_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes")
        return key

    def encrypt(self, plaintext: str) -> str:
        aead = AESGCM(self._key())
        nonce = os.urandom(NONCE_LENGTH)
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext.
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ":".join(
            [
                ENVELOPE_VERSION,
                base64.b64encode(nonce).decode("ascii"),
                base64.b64encode(tag).decode("ascii"),
                base64.b64encode(ciphertext).decode("ascii"),
            ]
        )

    def decrypt(self, envelope: str) -> str:
        parts = envelope.split(":") if isinstance(envelope, str) else []
        if len(parts) != 4 or parts[0] != ENVELOPE_VERSION:
            raise MalformedEnvelopeError("Invalid encrypted payload format")

        _, nonce_b64, tag_b64, ciphertext_b64 = parts
        nonce = _b64decode(nonce_b64, field="nonce")
        tag = _b64decode(tag_b64, field="tag")
        ciphertext = _b64decode(ciphertext_b64, field="ciphertext")
        if len(nonce) != NONCE_LENGTH:
            raise MalformedEnvelopeError("Envelope nonce has unexpected length")
        if len(tag) != TAG_LENGTH:
            raise AuthenticationFailureError("Encrypted payload failed authentication")

        aead = AESGCM(self._key())
        try:
            plaintext = aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationFailureError("Encrypted payload failed authentication") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEnvelopeError("Decrypted payload is not UTF-8 text") from exc


@lru_cache(maxsize=1)
def get_secret_cipher() -> SecretCipher:
    """Process-wide cipher bound to the configured key."""

    return SecretCipher()


def encrypt_secret(plaintext: str) -> str:
    return get_secret_cipher().encrypt(plaintext)


def decrypt_secret(envelope: str) -> str:
    return get_secret_cipher().decrypt(envelope)


__all__ = [
    "AuthenticationFailureError",
    "ConfigurationError",
    "MalformedEnvelopeError",
    "SecretCipher",
    "SecretCipherError",
    "decrypt_secret",
    "encrypt_secret",
    "get_secret_cipher",
]
