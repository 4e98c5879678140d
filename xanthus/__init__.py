"""Xanthus: multi-cloud VM provisioning with token-derived credential storage."""

__version__ = "0.1.0"
