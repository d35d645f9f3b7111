"""Authenticated symmetric encryption for OAuth token material."""

from __future__ import annotations

import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.core.exceptions import ConfigError, CryptoError

KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 16
SEPARATOR = ":"


class TokenCipher:
    """AES-256-GCM encrypt/decrypt with a process-wide key.

    Tokens are serialised as ``hex(iv):hex(tag):hex(ciphertext)``. The key is
    handed in once at startup; there is no lazy lookup of key material.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
            raise ConfigError(f"Encryption key must be exactly {KEY_SIZE} bytes")
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, key_hex: str | None) -> "TokenCipher":
        if not key_hex:
            raise ConfigError("TOKEN_ENCRYPTION_KEY is not set")
        if len(key_hex) != KEY_SIZE * 2:
            raise ConfigError("TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as exc:
            raise ConfigError("TOKEN_ENCRYPTION_KEY is not valid hex") from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        if not isinstance(plaintext, str):
            raise TypeError("plaintext must be a string")
        iv = os.urandom(IV_SIZE)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, token: str) -> str:
        if not isinstance(token, str):
            raise CryptoError()
        parts = token.split(SEPARATOR)
        if len(parts) != 3:
            raise CryptoError()
        try:
            iv, tag, ciphertext = (binascii.unhexlify(part) for part in parts)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError() from exc
        if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
            raise CryptoError()

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise CryptoError() from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CryptoError() from exc
