"""
AES-256-GCM encryption for vault secrets.

There is no master key file: the key is the SHA-256 of the caller's bearer
token, so the same token that authorizes KV calls also unlocks the values.
Each value gets a unique 12-byte nonce prepended to the ciphertext, and the
whole thing is base64-encoded for storage as a JSON string.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from xanthus.vault.errors import DecryptionError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(passphrase_source: str) -> bytes:
    """Derive the 32-byte AES key from a bearer token. Deterministic, unsalted."""
    return hashlib.sha256(passphrase_source.encode("utf-8")).digest()


def encrypt(plaintext: str, passphrase_source: str) -> str:
    """Encrypt plaintext. Returns base64(nonce (12 bytes) + ciphertext + tag (16 bytes))."""
    nonce = secrets.token_bytes(NONCE_SIZE)
    aesgcm = AESGCM(derive_key(passphrase_source))
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(ciphertext: str, passphrase_source: str) -> str:
    """Decrypt base64(nonce + ciphertext + tag) back to plaintext.

    Every failure mode raises DecryptionError; the cause is chained and
    logged at debug level only.
    """
    try:
        data = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.debug("Decrypt: malformed base64: %s", e)
        raise DecryptionError("Encrypted data is not valid base64") from e

    if len(data) < NONCE_SIZE + TAG_SIZE:
        logger.debug("Decrypt: %d bytes is shorter than nonce + tag", len(data))
        raise DecryptionError("Encrypted data too short")

    nonce, body = data[:NONCE_SIZE], data[NONCE_SIZE:]
    aesgcm = AESGCM(derive_key(passphrase_source))
    try:
        plaintext = aesgcm.decrypt(nonce, body, None)
    except InvalidTag as e:
        logger.debug("Decrypt: authentication failed (wrong token or tampered data)")
        raise DecryptionError("Encrypted data failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted data is not UTF-8") from e


class SymmetricCipher:
    """Injectable wrapper around encrypt/decrypt."""

    def encrypt(self, plaintext: str, passphrase_source: str) -> str:
        return encrypt(plaintext, passphrase_source)

    def decrypt(self, ciphertext: str, passphrase_source: str) -> str:
        return decrypt(ciphertext, passphrase_source)
