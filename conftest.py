"""
Root-level shared test fixtures.

Inherited by the vault tests and the top-level CLI/config tests.
"""

from __future__ import annotations

import pytest

from xanthus.config import reset_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        "XANTHUS_HOME",
        "XANTHUS_CF_API_URL",
        "XANTHUS_KV_TIMEOUT",
        "XANTHUS_NAMESPACE_TITLE",
        "XANTHUS_NAMESPACE_CACHE_TTL",
        "XANTHUS_RETRY_ATTEMPTS",
        "XANTHUS_RETRY_DELAY",
        "XANTHUS_SSH_KEY_NAME",
        "XANTHUS_SSH_KEY_BITS",
        "XANTHUS_HETZNER_API_URL",
        "XANTHUS_VALIDATION_TIMEOUT",
        "XANTHUS_LOG_LEVEL",
        "CLOUDFLARE_API_TOKEN",
        "CLOUDFLARE_ACCOUNT_ID",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_config():
    """Reset the config singleton between tests."""
    reset_config()
    yield
    reset_config()
