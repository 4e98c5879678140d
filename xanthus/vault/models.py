"""Vault data models.

The KV store only sees bytes; the records here own their wire format.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import BaseModel, ValidationError as PydanticValidationError

from xanthus.vault.errors import DecryptionError

PRIVATE_KEY_KEY = "config:ssh:private_key"
PUBLIC_KEY_KEY = "config:ssh:public_key"


class Namespace(BaseModel):
    """A Cloudflare KV namespace."""

    id: str
    title: str


class SSHKeyPair(BaseModel):
    """The platform's SSH identity. Never serialized to the remote store as a whole."""

    private_key: str
    public_key: str
    fingerprint: str
    key_name: str
    created_at: str


class SSHKeyMetadata(BaseModel):
    """Flat record written beside the local key files."""

    fingerprint: str
    key_name: str
    created_at: str


class SSHKeyRecord(BaseModel):
    """One half of the keypair as stored in KV.

    ``key_data`` is ciphertext for the private half and the plain
    authorized-key line for the public half.
    """

    key_data: str
    key_name: str
    created_at: str
    fingerprint: str

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes, *, key: str = "") -> SSHKeyRecord:
        try:
            return cls.model_validate_json(raw)
        except PydanticValidationError as e:
            raise DecryptionError(
                "Malformed SSH key record in KV", operation="decode", key=key
            ) from e


class EncryptedSecret(BaseModel):
    """A ciphertext string, stored in KV as a JSON string literal."""

    ciphertext: str

    def to_bytes(self) -> bytes:
        return json.dumps(self.ciphertext).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes, *, key: str = "") -> EncryptedSecret:
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecryptionError(
                "Malformed secret payload in KV", operation="decode", key=key
            ) from e
        if not isinstance(value, str):
            raise DecryptionError(
                f"Expected a JSON string in KV, got {type(value).__name__}",
                operation="decode",
                key=key,
            )
        return cls(ciphertext=value)


class PersistOutcome(StrEnum):
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"


class KeySource(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"
    GENERATED = "generated"


@dataclass
class KeyAcquisition:
    """Result of SSHKeyManager.get_or_create.

    ``remote`` and ``local`` report what happened to each persistence tier;
    a FAILED outcome still comes with a usable key_pair.
    """

    key_pair: SSHKeyPair
    source: KeySource
    remote: PersistOutcome = PersistOutcome.SKIPPED
    local: PersistOutcome = PersistOutcome.SKIPPED
    errors: list[Exception] = field(default_factory=list)

    @property
    def fingerprint(self) -> str:
        return self.key_pair.fingerprint


@dataclass(frozen=True)
class SetupResult:
    """Outcome of first-time setup for a Cloudflare token."""

    account_id: str
    namespace_id: str
