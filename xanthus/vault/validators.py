"""
Provider credential checks. Validate before anything is stored.

Each check is one lightweight authenticated call with a fixed timeout. A
rejected credential raises ValidationError and never reaches the vault;
an unreachable provider raises RemoteError.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Callable

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from xanthus.config import CLOUDFLARE_API_URL, HETZNER_API_URL
from xanthus.vault.errors import RemoteError, ValidationError

logger = logging.getLogger(__name__)


class OCICredentials(BaseModel):
    """Decoded OCI auth token."""

    tenancy: str
    user: str
    region: str
    fingerprint: str
    private_key: str


def validate_oci_auth_token(token: str) -> OCICredentials:
    """Decode and format-check a base64 JSON OCI auth token (no network call)."""
    if not token:
        raise ValidationError("OCI auth token is empty", provider="oci")
    try:
        creds = OCICredentials.model_validate(json.loads(base64.b64decode(token, validate=True)))
    except (binascii.Error, ValueError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid OCI auth token: {e}", provider="oci") from e

    checks = [
        (creds.tenancy.startswith("ocid1.tenancy."), "invalid tenancy OCID format"),
        (creds.user.startswith("ocid1.user."), "invalid user OCID format"),
        ("-" in creds.region, "invalid region format"),
        (":" in creds.fingerprint, "invalid fingerprint format"),
        (
            "-----BEGIN" in creds.private_key and "-----END" in creds.private_key,
            "invalid private key format",
        ),
    ]
    for ok, reason in checks:
        if not ok:
            raise ValidationError(f"Invalid OCI auth token: {reason}", provider="oci")
    return creds


class ProviderValidator:
    """Runs the authenticated check for each supported provider."""

    def __init__(
        self,
        *,
        cloudflare_api_url: str = CLOUDFLARE_API_URL,
        hetzner_api_url: str = HETZNER_API_URL,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.cloudflare_api_url = cloudflare_api_url.rstrip("/")
        self.hetzner_api_url = hetzner_api_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def validate(self, provider: str, credential: str) -> None:
        check = PROVIDER_VALIDATORS.get(provider)
        if check is None:
            raise ValidationError(f"Unsupported provider: {provider}", provider=provider)
        check(self, credential)

    def _authenticated_get(self, provider: str, url: str, credential: str) -> httpx.Response:
        if not credential:
            raise ValidationError(f"{provider} credential is empty", provider=provider)
        try:
            return self._client.get(url, headers={"Authorization": f"Bearer {credential}"})
        except httpx.HTTPError as e:
            logger.warning("%s validation request failed: %s", provider, e)
            raise RemoteError(
                f"Could not reach {provider} to validate the credential",
                operation="validate_credential",
                key=provider,
            ) from e

    def verify_cloudflare_token(self, token: str) -> None:
        resp = self._authenticated_get("cloudflare", f"{self.cloudflare_api_url}/user/tokens/verify", token)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        status = (body.get("result") or {}).get("status")
        if resp.status_code != 200 or not body.get("success") or status != "active":
            logger.warning("Cloudflare token verification failed with status %d", resp.status_code)
            raise ValidationError("Invalid Cloudflare API token", provider="cloudflare")
        logger.info("Cloudflare token verified")

    def validate_hetzner_api_key(self, api_key: str) -> None:
        resp = self._authenticated_get("hetzner", f"{self.hetzner_api_url}/server_types", api_key)
        if resp.status_code != 200:
            logger.warning("Hetzner API key validation failed with status %d", resp.status_code)
            raise ValidationError("Invalid Hetzner API key", provider="hetzner")
        logger.info("Hetzner API key validated")


# provider name -> check(validator, credential); raises ValidationError on rejection
PROVIDER_VALIDATORS: dict[str, Callable[[ProviderValidator, str], object]] = {
    "hetzner": ProviderValidator.validate_hetzner_api_key,
    "oci": lambda _validator, token: validate_oci_auth_token(token),
}
