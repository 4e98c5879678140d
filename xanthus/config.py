"""
Centralized configuration for Xanthus.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from xanthus.config import get_config
    cfg = get_config()
    print(cfg.ssh_dir)              # "/home/user/.xanthus/ssh"
    print(cfg.kv.namespace_title)   # "Xanthus"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
HETZNER_API_URL = "https://api.hetzner.cloud/v1"


@dataclass(frozen=True)
class KVConfig:
    """Cloudflare Workers KV parameters."""

    api_url: str = CLOUDFLARE_API_URL
    timeout: float = 10.0
    namespace_title: str = "Xanthus"
    namespace_cache_ttl: float = 600.0


@dataclass(frozen=True)
class RetryConfig:
    """Read-after-write retry bounds for KV lookups."""

    attempts: int = 3
    delay: float = 2.0


@dataclass(frozen=True)
class SSHConfig:
    """Platform SSH keypair parameters."""

    key_name: str = "xanthus-deploy-key"
    key_bits: int = 2048


@dataclass(frozen=True)
class ProviderConfig:
    """Third-party provider validation endpoints."""

    hetzner_api_url: str = HETZNER_API_URL
    validation_timeout: float = 10.0


@dataclass(frozen=True)
class Config:
    """Top-level Xanthus configuration."""

    home: Path = field(default_factory=lambda: Path.home() / ".xanthus")

    kv: KVConfig = field(default_factory=KVConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)

    log_level: str = "WARNING"

    @property
    def ssh_dir(self) -> Path:
        return self.home / "ssh"


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    home = Path(os.environ.get("XANTHUS_HOME", Path.home() / ".xanthus"))

    kv = KVConfig(
        api_url=os.environ.get("XANTHUS_CF_API_URL", CLOUDFLARE_API_URL).rstrip("/"),
        timeout=float(os.environ.get("XANTHUS_KV_TIMEOUT", "10")),
        namespace_title=os.environ.get("XANTHUS_NAMESPACE_TITLE", "Xanthus"),
        namespace_cache_ttl=float(os.environ.get("XANTHUS_NAMESPACE_CACHE_TTL", "600")),
    )

    retry = RetryConfig(
        attempts=int(os.environ.get("XANTHUS_RETRY_ATTEMPTS", "3")),
        delay=float(os.environ.get("XANTHUS_RETRY_DELAY", "2.0")),
    )

    ssh = SSHConfig(
        key_name=os.environ.get("XANTHUS_SSH_KEY_NAME", "xanthus-deploy-key"),
        key_bits=int(os.environ.get("XANTHUS_SSH_KEY_BITS", "2048")),
    )

    providers = ProviderConfig(
        hetzner_api_url=os.environ.get("XANTHUS_HETZNER_API_URL", HETZNER_API_URL).rstrip("/"),
        validation_timeout=float(os.environ.get("XANTHUS_VALIDATION_TIMEOUT", "10")),
    )

    return Config(
        home=home,
        kv=kv,
        retry=retry,
        ssh=ssh,
        providers=providers,
        log_level=os.environ.get("XANTHUS_LOG_LEVEL", "WARNING").upper(),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
