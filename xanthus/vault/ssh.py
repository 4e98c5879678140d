"""
Platform SSH keypair: local cache first, then KV, then generate.

    get_or_create(token, account_id)
        1. local   ~/.xanthus/ssh/{xanthus_key, xanthus_key.pub, key_metadata.json}
        2. remote  KV config:ssh:private_key (encrypted) + config:ssh:public_key
        3. generate RSA-2048; on a KV miss, best-effort persist to KV and local disk

Local files are the only plaintext-at-rest copy of the private key; the
operator's own disk is trusted. Persistence failures after generation are
reported in the returned KeyAcquisition rather than raised.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import stat
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError as PydanticValidationError

from xanthus.vault.crypto import SymmetricCipher
from xanthus.vault.errors import (
    DecryptionError,
    KeyGenerationError,
    NotFoundError,
    VaultError,
)
from xanthus.vault.kv import KVStore, NamespaceResolver
from xanthus.vault.models import (
    PRIVATE_KEY_KEY,
    PUBLIC_KEY_KEY,
    KeyAcquisition,
    KeySource,
    PersistOutcome,
    SSHKeyMetadata,
    SSHKeyPair,
    SSHKeyRecord,
)
from xanthus.vault.retry import ConsistencyRetrier

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAME = "xanthus-deploy-key"
DEFAULT_KEY_SIZE = 2048

PRIVATE_KEY_FILE = "xanthus_key"
PUBLIC_KEY_FILE = "xanthus_key.pub"
METADATA_FILE = "key_metadata.json"

DIR_MODE = stat.S_IRWXU  # 700
PRIVATE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 600
PUBLIC_MODE = PRIVATE_MODE | stat.S_IRGRP | stat.S_IROTH  # 644


def fingerprint(public_key: str) -> str:
    """OpenSSH SHA256 fingerprint of an authorized-key line."""
    parts = public_key.split()
    if len(parts) < 2:
        raise ValueError("Public key is not in authorized-key format")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Public key blob is not valid base64") from e
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii")
    return "SHA256:" + digest.rstrip("=")


def generate_key_pair(
    key_name: str = DEFAULT_KEY_NAME, key_size: int = DEFAULT_KEY_SIZE
) -> SSHKeyPair:
    """Generate a new RSA keypair. Raises KeyGenerationError; never returns a partial pair."""
    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_line = (
            private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.OpenSSH,
                format=serialization.PublicFormat.OpenSSH,
            )
            .decode("ascii")
            + "\n"
        )
        return SSHKeyPair(
            private_key=private_pem,
            public_key=public_line,
            fingerprint=fingerprint(public_line),
            key_name=key_name,
            created_at=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
    except (ValueError, TypeError) as e:
        raise KeyGenerationError(
            f"Failed to generate SSH key: {e}", operation="generate_key_pair"
        ) from e


class LocalKeyCache:
    """Fixed directory holding the keypair and its metadata."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    @property
    def private_key_path(self) -> Path:
        return self.directory / PRIVATE_KEY_FILE

    @property
    def public_key_path(self) -> Path:
        return self.directory / PUBLIC_KEY_FILE

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILE

    def load(self) -> SSHKeyPair | None:
        """Return the cached keypair, or None if any file is missing or unparseable."""
        if not self.private_key_path.exists():
            logger.debug("Local SSH key not found at %s", self.private_key_path)
            return None
        try:
            private_pem = self.private_key_path.read_text()
            public_line = self.public_key_path.read_text()
            metadata = SSHKeyMetadata.model_validate_json(self.metadata_path.read_bytes())
            serialization.load_pem_private_key(private_pem.encode("ascii"), password=None)
            serialization.load_ssh_public_key(public_line.strip().encode("ascii"))
        except (OSError, ValueError, TypeError, PydanticValidationError) as e:
            logger.warning("Ignoring unreadable local SSH key cache in %s: %s", self.directory, e)
            return None

        return SSHKeyPair(
            private_key=private_pem,
            public_key=public_line,
            fingerprint=metadata.fingerprint,
            key_name=metadata.key_name,
            created_at=metadata.created_at,
        )

    def save(self, key_pair: SSHKeyPair) -> None:
        self.directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        self.directory.chmod(DIR_MODE)

        # The private key is never on disk with wider permissions than 600,
        # including a pre-existing file being overwritten.
        fd = os.open(self.private_key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_MODE)
        with os.fdopen(fd, "w") as f:
            os.fchmod(f.fileno(), PRIVATE_MODE)
            f.write(key_pair.private_key)

        self.public_key_path.write_text(key_pair.public_key)
        self.public_key_path.chmod(PUBLIC_MODE)

        metadata = SSHKeyMetadata(
            fingerprint=key_pair.fingerprint,
            key_name=key_pair.key_name,
            created_at=key_pair.created_at,
        )
        self.metadata_path.write_text(metadata.model_dump_json())
        self.metadata_path.chmod(PUBLIC_MODE)
        logger.info("SSH keys saved locally to %s", self.directory)

    def remove(self) -> None:
        """Delete the local copy (logout). Missing files are fine."""
        for path in (self.private_key_path, self.public_key_path, self.metadata_path):
            path.unlink(missing_ok=True)
        logger.info("Local SSH keys removed from %s", self.directory)


class SSHKeyManager:
    """Three-tier lookup for the installation's single SSH identity.

    Only a confirmed miss (no namespace, or no record after retries) leads to
    a new key being written to KV. When the remote record exists but cannot
    be read (transport error, other token, corrupt record) a key is still
    generated for this call, but neither tier is written, so the shared
    identity in KV is left intact.
    """

    def __init__(
        self,
        store: KVStore,
        resolver: NamespaceResolver,
        local_cache: LocalKeyCache,
        cipher: SymmetricCipher | None = None,
        *,
        retrier: ConsistencyRetrier | None = None,
        key_name: str = DEFAULT_KEY_NAME,
        key_size: int = DEFAULT_KEY_SIZE,
        generator: Callable[[str, int], SSHKeyPair] = generate_key_pair,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.local_cache = local_cache
        self.cipher = cipher or SymmetricCipher()
        self.retrier = retrier or ConsistencyRetrier(store)
        self.key_name = key_name
        self.key_size = key_size
        self._generate = generator

    def get_or_create(self, token: str, account_id: str) -> KeyAcquisition:
        key_pair = self.local_cache.load()
        if key_pair is not None:
            logger.info("SSH key loaded from local cache")
            return KeyAcquisition(key_pair=key_pair, source=KeySource.LOCAL)

        try:
            key_pair = self.load_remote(token, account_id)
        except NotFoundError as e:
            logger.info("SSH key not in KV: %s", e)
        except VaultError as e:
            logger.warning("SSH key in KV is unavailable, using a temporary key: %s", e)
            key_pair = self._generate(self.key_name, self.key_size)
            return KeyAcquisition(key_pair=key_pair, source=KeySource.GENERATED, errors=[e])
        else:
            logger.info("SSH key loaded from KV")
            acquisition = KeyAcquisition(key_pair=key_pair, source=KeySource.REMOTE)
            acquisition.local = self._persist_local(key_pair, acquisition)
            return acquisition

        logger.info("Generating new SSH key pair")
        key_pair = self._generate(self.key_name, self.key_size)
        acquisition = KeyAcquisition(key_pair=key_pair, source=KeySource.GENERATED)
        acquisition.remote = self._persist_remote(token, account_id, key_pair, acquisition)
        acquisition.local = self._persist_local(key_pair, acquisition)
        logger.info("New SSH key generated with fingerprint %s", key_pair.fingerprint)
        return acquisition

    def load_remote(self, token: str, account_id: str) -> SSHKeyPair:
        """Fetch and decrypt the stored keypair.

        Raises NotFoundError when nothing is stored, DecryptionError when the
        record is unreadable and RemoteError on transport failure.
        """
        namespace_id = self.resolver.find(token, account_id)
        if namespace_id is None:
            raise NotFoundError("KV namespace does not exist", operation="load_ssh_key")

        private = SSHKeyRecord.from_bytes(
            self.retrier.get(token, account_id, namespace_id, PRIVATE_KEY_KEY), key=PRIVATE_KEY_KEY
        )
        public = SSHKeyRecord.from_bytes(
            self.retrier.get(token, account_id, namespace_id, PUBLIC_KEY_KEY), key=PUBLIC_KEY_KEY
        )
        try:
            private_pem = self.cipher.decrypt(private.key_data, token)
        except DecryptionError as e:
            raise DecryptionError(
                "Failed to decrypt SSH private key", operation="load_ssh_key", key=PRIVATE_KEY_KEY
            ) from e

        try:
            computed = fingerprint(public.key_data)
        except ValueError as e:
            raise DecryptionError(
                f"Malformed SSH public key in KV: {e}", operation="load_ssh_key", key=PUBLIC_KEY_KEY
            ) from e
        if computed != private.fingerprint:
            logger.warning(
                "KV fingerprint %s does not match public key (%s); using computed value",
                private.fingerprint,
                computed,
            )
        return SSHKeyPair(
            private_key=private_pem,
            public_key=public.key_data,
            fingerprint=computed,
            key_name=private.key_name,
            created_at=private.created_at,
        )

    def store_remote(self, token: str, account_id: str, key_pair: SSHKeyPair) -> None:
        namespace_id = self.resolver.ensure(token, account_id)
        private = SSHKeyRecord(
            key_data=self.cipher.encrypt(key_pair.private_key, token),
            key_name=key_pair.key_name,
            created_at=key_pair.created_at,
            fingerprint=key_pair.fingerprint,
        )
        public = SSHKeyRecord(
            key_data=key_pair.public_key,
            key_name=key_pair.key_name,
            created_at=key_pair.created_at,
            fingerprint=key_pair.fingerprint,
        )
        self.store.put(token, account_id, namespace_id, PRIVATE_KEY_KEY, private.to_bytes())
        self.store.put(token, account_id, namespace_id, PUBLIC_KEY_KEY, public.to_bytes())

    def _persist_remote(
        self, token: str, account_id: str, key_pair: SSHKeyPair, acquisition: KeyAcquisition
    ) -> PersistOutcome:
        try:
            self.store_remote(token, account_id, key_pair)
        except VaultError as e:
            logger.warning("Failed to store SSH key in KV: %s", e)
            acquisition.errors.append(e)
            return PersistOutcome.FAILED
        logger.info("SSH key stored in KV")
        return PersistOutcome.PERSISTED

    def _persist_local(self, key_pair: SSHKeyPair, acquisition: KeyAcquisition) -> PersistOutcome:
        try:
            self.local_cache.save(key_pair)
        except OSError as e:
            logger.warning("Failed to cache SSH key locally: %s", e)
            acquisition.errors.append(e)
            return PersistOutcome.FAILED
        return PersistOutcome.PERSISTED
