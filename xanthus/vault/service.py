"""
CredentialService, the facade the rest of the platform talks to.

Reads check the temp cache first, then KV (with retry) + decrypt. Writes
encrypt, put, then park the plaintext in the temp cache so the very next
read succeeds without waiting for KV propagation.

This is the only module that turns vault errors into user-facing text
(``user_message``).
"""

from __future__ import annotations

import logging

from xanthus.vault.cache import TempSecretCache
from xanthus.vault.crypto import SymmetricCipher
from xanthus.vault.errors import (
    DecryptionError,
    KeyGenerationError,
    NotConfiguredError,
    NotFoundError,
    RemoteError,
    RequestError,
    ValidationError,
    VaultError,
)
from xanthus.vault.kv import KVStore, NamespaceResolver
from xanthus.vault.models import EncryptedSecret, KeyAcquisition, SetupResult
from xanthus.vault.retry import ConsistencyRetrier
from xanthus.vault.ssh import SSHKeyManager
from xanthus.vault.validators import ProviderValidator

logger = logging.getLogger(__name__)


def secret_key(*parts: str) -> str:
    """Build a flat colon-delimited logical key: secret_key("hetzner", "api_key") -> "config:hetzner:api_key"."""
    return ":".join(("config", *parts))


def provider_key(provider: str) -> str:
    return secret_key(provider, "api_key")


def _rewrap(exc: VaultError, message: str, *, operation: str, key: str) -> VaultError:
    """Same error class, new message, operation context attached."""
    if isinstance(exc, RemoteError):
        return type(exc)(message, status_code=exc.status_code, operation=operation, key=key)
    return type(exc)(message, operation=operation, key=key)


class CredentialService:
    """Facade over cipher, KV, retry, temp cache and SSH key manager."""

    def __init__(
        self,
        store: KVStore,
        resolver: NamespaceResolver,
        retrier: ConsistencyRetrier,
        cache: TempSecretCache,
        ssh_keys: SSHKeyManager,
        cipher: SymmetricCipher | None = None,
        validator: ProviderValidator | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.retrier = retrier
        self.cache = cache
        self.ssh_keys = ssh_keys
        self.cipher = cipher or SymmetricCipher()
        self.validator = validator

    def close(self) -> None:
        self.store.close()
        if self.validator is not None:
            self.validator.close()

    # ── Secrets ───────────────────────────────────────────────────────

    def get_secret(
        self,
        token: str,
        account_id: str,
        logical_key: str,
        *,
        deadline: float | None = None,
    ) -> str:
        """Return the plaintext for logical_key.

        Raises NotConfiguredError when nothing is stored (after retries),
        DecryptionError when the record cannot be read with this token, and
        RemoteError on transport failure.
        """
        value, found = self.cache.get(account_id, logical_key)
        if found:
            logger.debug("get_secret: temp cache hit for %s (account %s)", logical_key, account_id)
            return value

        try:
            namespace_id = self.resolver.find(
                token, account_id, timeout=self.retrier.timeout_for(deadline, key=logical_key)
            )
            if namespace_id is None:
                raise NotConfiguredError(
                    "KV namespace does not exist", operation="get_secret", key=logical_key
                )
            raw = self.retrier.get(token, account_id, namespace_id, logical_key, deadline=deadline)
        except NotFoundError as e:
            logger.info("get_secret: %s not found for account %s after retries", logical_key, account_id)
            raise NotConfiguredError(
                f"No value stored for {logical_key}", operation="get_secret", key=logical_key
            ) from e
        except RemoteError as e:
            raise _rewrap(
                e, f"Failed to read {logical_key}: {e.args[0]}", operation="get_secret", key=logical_key
            ) from e

        try:
            secret = EncryptedSecret.from_bytes(raw, key=logical_key)
            plaintext = self.cipher.decrypt(secret.ciphertext, token)
        except DecryptionError as e:
            logger.warning("get_secret: decryption failed for %s (account %s)", logical_key, account_id)
            raise DecryptionError(
                f"Failed to decrypt {logical_key}", operation="get_secret", key=logical_key
            ) from e
        return plaintext

    def set_secret(self, token: str, account_id: str, logical_key: str, plaintext: str) -> None:
        """Encrypt and store. Writes are not retried."""
        secret = EncryptedSecret(ciphertext=self.cipher.encrypt(plaintext, token))
        try:
            namespace_id = self.resolver.ensure(token, account_id)
            self.store.put(token, account_id, namespace_id, logical_key, secret.to_bytes())
        except RemoteError as e:
            raise _rewrap(
                e, f"Failed to store {logical_key}: {e.args[0]}", operation="set_secret", key=logical_key
            ) from e
        self.cache.set(account_id, logical_key, plaintext)
        logger.info("set_secret: stored %s for account %s", logical_key, account_id)

    def delete_secret(self, token: str, account_id: str, logical_key: str) -> None:
        self.cache.clear(account_id, logical_key)
        try:
            namespace_id = self.resolver.find(token, account_id)
            if namespace_id is None:
                return
            self.store.delete(token, account_id, namespace_id, logical_key)
        except RemoteError as e:
            raise _rewrap(
                e, f"Failed to delete {logical_key}: {e.args[0]}", operation="delete_secret", key=logical_key
            ) from e

    def list_secrets(self, token: str, account_id: str, prefix: str = "config:") -> list[str]:
        """Key names only, never values."""
        try:
            namespace_id = self.resolver.find(token, account_id)
            if namespace_id is None:
                return []
            return self.store.list_keys(token, account_id, namespace_id, prefix)
        except RemoteError as e:
            raise _rewrap(e, f"Failed to list keys: {e.args[0]}", operation="list_secrets", key=prefix) from e

    # ── Provider credentials ──────────────────────────────────────────

    def configure_provider(self, token: str, account_id: str, provider: str, credential: str) -> None:
        """Validate against the provider, then store. Rejected credentials are never stored."""
        if self.validator is None:
            raise ValidationError(
                "No provider validator configured", provider=provider, operation="configure_provider"
            )
        self.validator.validate(provider, credential)
        self.set_secret(token, account_id, provider_key(provider), credential)

    def get_provider_key(self, token: str, account_id: str, provider: str) -> str:
        return self.get_secret(token, account_id, provider_key(provider))

    # ── SSH ───────────────────────────────────────────────────────────

    def get_or_create_ssh_key(self, token: str, account_id: str) -> KeyAcquisition:
        return self.ssh_keys.get_or_create(token, account_id)

    # ── Session lifecycle ─────────────────────────────────────────────

    def setup(self, token: str) -> SetupResult:
        """First-time setup: verify the token, find the account, ensure the namespace."""
        if self.validator is not None:
            self.validator.verify_cloudflare_token(token)
        try:
            account_id = self.store.fetch_account_id(token)
            namespace_id = self.resolver.ensure(token, account_id)
        except RemoteError as e:
            raise _rewrap(e, f"Setup failed: {e.args[0]}", operation="setup", key="") from e
        logger.info("Setup complete for account %s (namespace %s)", account_id, namespace_id)
        return SetupResult(account_id=account_id, namespace_id=namespace_id)

    def logout(self, account_id: str) -> None:
        """Forget this machine's copies. KV copies persist across sessions."""
        self.cache.clear(account_id)
        self.resolver.invalidate(account_id)
        self.ssh_keys.local_cache.remove()


def user_message(exc: Exception) -> str:
    """Render a vault error for a human."""
    if isinstance(exc, NotConfiguredError):
        return "Not configured yet. Run first-time setup (xanthus setup) and store your provider credentials."
    if isinstance(exc, DecryptionError):
        return (
            "A stored credential could not be decrypted. The Cloudflare token does not match "
            "the one it was stored with, or the record is corrupted."
        )
    if isinstance(exc, ValidationError):
        who = exc.provider or "The provider"
        return f"{who} rejected the credential: {exc.args[0]}"
    if isinstance(exc, RequestError):
        return "Cloudflare rejected the request. Check that the token has Workers KV Storage:Edit permission."
    if isinstance(exc, RemoteError):
        if exc.operation == "validate_credential":
            return f"{exc.args[0]}. Try again shortly."
        return "Could not reach Cloudflare KV. Try again shortly."
    if isinstance(exc, KeyGenerationError):
        return "Could not generate an SSH key pair."
    if isinstance(exc, VaultError):
        return exc.args[0] if exc.args else "Credential operation failed."
    return "Unexpected error."
