"""
Test fixtures for the vault.

- FakeKVStore: in-memory stand-in for KVStore that records every call and
  can simulate propagation lag and transport failures
- Retry policies that never actually sleep
"""

from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from xanthus.vault.cache import TempSecretCache
from xanthus.vault.crypto import SymmetricCipher
from xanthus.vault.errors import NotFoundError, RemoteError
from xanthus.vault.kv import NamespaceResolver
from xanthus.vault.models import Namespace
from xanthus.vault.retry import ConsistencyRetrier, RetryPolicy, fixed_delay
from xanthus.vault.service import CredentialService
from xanthus.vault.ssh import LocalKeyCache, SSHKeyManager, generate_key_pair


class FakeKVStore:
    """In-memory KV with the KVStore interface."""

    def __init__(self) -> None:
        self.namespaces: list[Namespace] = []
        self.values: dict[str, dict[str, bytes]] = {}
        self.calls: list[tuple[str, str]] = []
        # key -> errors raised by successive get() calls before the real value is served
        self.get_errors: dict[str, list[Exception]] = {}
        # keys whose writes are not yet visible to readers
        self.hidden: set[str] = set()
        self.put_error: Exception | None = None
        self.account_id = "acct-1"
        self.timeout = 10.0
        # timeout passed to each list_namespaces / get call, in order
        self.timeouts: list[tuple[str, float | None]] = []
        self.closed = False

    def namespace_values(self, title: str = "Xanthus") -> dict[str, bytes]:
        for ns in self.namespaces:
            if ns.title == title:
                return self.values[ns.id]
        return {}

    def fetch_account_id(self, token, *, timeout=None):
        self.calls.append(("fetch_account_id", ""))
        return self.account_id

    def list_namespaces(self, token, account_id, *, timeout=None):
        self.calls.append(("list_namespaces", ""))
        self.timeouts.append(("list_namespaces", timeout))
        return list(self.namespaces)

    def create_namespace(self, token, account_id, title, *, timeout=None):
        self.calls.append(("create_namespace", title))
        ns = Namespace(id=uuid.uuid4().hex, title=title)
        self.namespaces.append(ns)
        self.values[ns.id] = {}
        return ns

    def put(self, token, account_id, namespace_id, key, value, *, timeout=None):
        self.calls.append(("put", key))
        if self.put_error is not None:
            raise self.put_error
        self.values.setdefault(namespace_id, {})[key] = value

    def get(self, token, account_id, namespace_id, key, *, timeout=None):
        self.calls.append(("get", key))
        self.timeouts.append(("get", timeout))
        errors = self.get_errors.get(key)
        if errors:
            raise errors.pop(0)
        if key in self.hidden or key not in self.values.get(namespace_id, {}):
            raise NotFoundError("Key not found in KV", operation="get", key=key)
        return self.values[namespace_id][key]

    def delete(self, token, account_id, namespace_id, key, *, timeout=None):
        self.calls.append(("delete", key))
        self.values.get(namespace_id, {}).pop(key, None)

    def list_keys(self, token, account_id, namespace_id, prefix="", *, timeout=None):
        self.calls.append(("list_keys", prefix))
        return sorted(k for k in self.values.get(namespace_id, {}) if k.startswith(prefix))

    def close(self):
        self.closed = True

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)


class FakeValidator:
    """Accepts credentials starting with "valid"."""

    def __init__(self) -> None:
        self.validated: list[tuple[str, str]] = []
        self.closed = False

    def validate(self, provider: str, credential: str) -> None:
        from xanthus.vault.errors import ValidationError

        self.validated.append((provider, credential))
        if not credential.startswith("valid"):
            raise ValidationError(f"Invalid {provider} API key", provider=provider)

    def verify_cloudflare_token(self, token: str) -> None:
        from xanthus.vault.errors import ValidationError

        if token == "bad-token":
            raise ValidationError("Invalid Cloudflare API token", provider="cloudflare")

    def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


@pytest.fixture
def kv() -> FakeKVStore:
    return FakeKVStore()


@pytest.fixture
def kv_with_namespace(kv: FakeKVStore) -> FakeKVStore:
    kv.create_namespace("tok", "acct-1", "Xanthus")
    kv.calls.clear()
    return kv


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def policy(sleeps: SleepRecorder) -> RetryPolicy:
    """Production bounds (3 attempts, 2 s) without real sleeping."""
    return RetryPolicy(max_attempts=3, delay=fixed_delay(2.0), sleep=sleeps)


@pytest.fixture
def local_cache(tmp_path: Path) -> LocalKeyCache:
    return LocalKeyCache(tmp_path / ".xanthus" / "ssh")


@pytest.fixture(scope="session")
def key_pair():
    """One real RSA keypair shared across tests (generation is slow-ish)."""
    return generate_key_pair()


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def service(kv, policy, local_cache, validator) -> CredentialService:
    cipher = SymmetricCipher()
    resolver = NamespaceResolver(kv)
    retrier = ConsistencyRetrier(kv, policy)
    return CredentialService(
        kv,
        resolver,
        retrier,
        TempSecretCache(),
        SSHKeyManager(kv, resolver, local_cache, cipher, retrier=retrier),
        cipher=cipher,
        validator=validator,
    )


@pytest.fixture
def reader(kv, policy, local_cache) -> CredentialService:
    """A second service over the same KV with its own (empty) temp cache."""
    cipher = SymmetricCipher()
    resolver = NamespaceResolver(kv)
    retrier = ConsistencyRetrier(kv, policy)
    return CredentialService(
        kv,
        resolver,
        retrier,
        TempSecretCache(),
        SSHKeyManager(kv, resolver, local_cache, cipher, retrier=retrier),
        cipher=cipher,
    )


@pytest.fixture
def remote_error() -> RemoteError:
    return RemoteError("KV API returned status 503", status_code=503, operation="get")
