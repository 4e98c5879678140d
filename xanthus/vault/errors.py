"""
Vault error taxonomy.

Every error carries the operation and logical key it was raised for, so
context survives as it is wrapped on the way up. Only
``xanthus.vault.service.user_message`` turns these into user-facing text.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for all credential subsystem failures."""

    def __init__(self, message: str, *, operation: str = "", key: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key

    def __str__(self) -> str:
        msg = super().__str__()
        context = " ".join(
            part for part in (
                f"operation={self.operation}" if self.operation else "",
                f"key={self.key}" if self.key else "",
            ) if part
        )
        return f"{msg} [{context}]" if context else msg


class ValidationError(VaultError):
    """A third-party provider rejected the credential. Never stored."""

    def __init__(self, message: str, *, provider: str = "", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.provider = provider


class NotConfiguredError(VaultError):
    """No record exists after retries; first-time setup has not run."""


class DecryptionError(VaultError):
    """Record present but unreadable with the current passphrase source."""


class NotFoundError(VaultError):
    """The remote store has no value under the requested key."""


class RemoteError(VaultError):
    """Transport or protocol failure talking to the remote store."""

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RequestError(RemoteError):
    """The store refused the request itself (malformed, unauthorised). Not retried."""


class KeyGenerationError(VaultError):
    """SSH key material could not be synthesized."""
