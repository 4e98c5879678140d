"""
Xanthus Vault: credential store backed by Cloudflare KV + AES-256-GCM.

The encryption key is derived from the caller's Cloudflare token, so there is
no master key to manage. build_service() is the composition root: it wires
one KV client, one namespace resolver, one temp cache and one SSH key
manager into a CredentialService.

Public API:
    service = build_service()
    service.set_secret(token, account_id, "config:hetzner:api_key", value)
    service.get_secret(token, account_id, "config:hetzner:api_key")
    service.get_or_create_ssh_key(token, account_id)
    service.logout(account_id)
"""

from __future__ import annotations

import httpx

from xanthus.config import Config, get_config
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
from xanthus.vault.retry import ConsistencyRetrier, RetryPolicy, fixed_delay
from xanthus.vault.service import CredentialService, provider_key, secret_key, user_message
from xanthus.vault.ssh import LocalKeyCache, SSHKeyManager
from xanthus.vault.validators import ProviderValidator


def build_service(
    config: Config | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> CredentialService:
    """Wire a CredentialService from config. ``transport`` is for tests."""
    cfg = config or get_config()
    cipher = SymmetricCipher()
    store = KVStore(cfg.kv.api_url, cfg.kv.timeout, transport=transport)
    resolver = NamespaceResolver(store, cfg.kv.namespace_title, cfg.kv.namespace_cache_ttl)
    retrier = ConsistencyRetrier(
        store,
        RetryPolicy(max_attempts=cfg.retry.attempts, delay=fixed_delay(cfg.retry.delay)),
    )
    ssh_keys = SSHKeyManager(
        store,
        resolver,
        LocalKeyCache(cfg.ssh_dir),
        cipher,
        retrier=retrier,
        key_name=cfg.ssh.key_name,
        key_size=cfg.ssh.key_bits,
    )
    validator = ProviderValidator(
        cloudflare_api_url=cfg.kv.api_url,
        hetzner_api_url=cfg.providers.hetzner_api_url,
        timeout=cfg.providers.validation_timeout,
        transport=transport,
    )
    return CredentialService(
        store,
        resolver,
        retrier,
        TempSecretCache(),
        ssh_keys,
        cipher=cipher,
        validator=validator,
    )


__all__ = [
    "CredentialService",
    "DecryptionError",
    "KeyGenerationError",
    "NotConfiguredError",
    "NotFoundError",
    "RemoteError",
    "RequestError",
    "ValidationError",
    "VaultError",
    "build_service",
    "provider_key",
    "secret_key",
    "user_message",
]
