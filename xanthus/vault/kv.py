"""
Cloudflare Workers KV client, the vault's only durable backing store.

KV is eventually consistent: a value written from one edge location can take
seconds to become visible to reads. Callers that read right after writing
should go through ``xanthus.vault.retry.ConsistencyRetrier`` and the temp
cache in ``xanthus.vault.cache``.

Every call is authenticated with the caller's bearer token, which doubles as
the encryption passphrase source. Values are opaque bytes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from xanthus.config import CLOUDFLARE_API_URL
from xanthus.vault.errors import (
    NotFoundError,
    RemoteError,
    RequestError,
    ValidationError,
)
from xanthus.vault.models import Namespace

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE_TITLE = "Xanthus"
NAMESPACES_PER_PAGE = 100


def _values_path(account_id: str, namespace_id: str, key: str) -> str:
    return (
        f"/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        f"/values/{quote(key, safe='')}"
    )


def _format_errors(body: dict[str, Any]) -> str:
    errors = body.get("errors") or []
    parts = [f"{e.get('code')}: {e.get('message')}" for e in errors if isinstance(e, dict)]
    return "; ".join(parts) or "unknown error"


class KVStore:
    """Synchronous KV client. One instance is shared across request threads."""

    def __init__(
        self,
        api_url: str = CLOUDFLARE_API_URL,
        timeout: float = 10.0,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(base_url=self.api_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> KVStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── Transport ─────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        operation: str,
        key: str = "",
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(kwargs.pop("headers", {}))
        try:
            return self._client.request(
                method,
                path,
                headers=headers,
                timeout=self.timeout if timeout is None else timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise RemoteError(
                f"KV {method} timed out", operation=operation, key=key
            ) from e
        except httpx.HTTPError as e:
            raise RemoteError(
                f"KV {method} failed: {e}", operation=operation, key=key
            ) from e

    @staticmethod
    def _raise_for_status(resp: httpx.Response, *, operation: str, key: str = "") -> None:
        if resp.is_success:
            return
        code = resp.status_code
        msg = f"KV API returned status {code}"
        if 400 <= code < 500 and code not in (408, 429):
            raise RequestError(msg, status_code=code, operation=operation, key=key)
        raise RemoteError(msg, status_code=code, operation=operation, key=key)

    def _envelope(self, resp: httpx.Response, *, operation: str, key: str = "") -> dict[str, Any]:
        """Check status and the ``{"success": ..., "errors": [...]}`` envelope."""
        self._raise_for_status(resp, operation=operation, key=key)
        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteError(
                "KV API returned a non-JSON response", operation=operation, key=key
            ) from e
        if not isinstance(body, dict) or not body.get("success"):
            detail = _format_errors(body) if isinstance(body, dict) else "malformed envelope"
            raise RemoteError(
                f"KV API call failed: {detail}",
                status_code=resp.status_code,
                operation=operation,
                key=key,
            )
        return body

    # ── Accounts & namespaces ─────────────────────────────────────────

    def fetch_account_id(self, token: str, *, timeout: float | None = None) -> str:
        """Return the first account the token is a member of."""
        resp = self._request("GET", "/memberships", token, operation="fetch_account_id", timeout=timeout)
        body = self._envelope(resp, operation="fetch_account_id")
        result = body.get("result") or []
        if not result:
            raise ValidationError(
                "No account memberships found - token needs Account:Workers KV Storage:Edit permission",
                provider="cloudflare",
                operation="fetch_account_id",
            )
        return str(result[0]["account"]["id"])

    def list_namespaces(
        self, token: str, account_id: str, *, timeout: float | None = None
    ) -> list[Namespace]:
        path = f"/accounts/{account_id}/storage/kv/namespaces"
        namespaces: list[Namespace] = []
        page = 1
        while True:
            resp = self._request(
                "GET",
                path,
                token,
                operation="list_namespaces",
                timeout=timeout,
                params={"per_page": NAMESPACES_PER_PAGE, "page": page},
            )
            body = self._envelope(resp, operation="list_namespaces")
            namespaces.extend(Namespace.model_validate(ns) for ns in body.get("result") or [])
            info = body.get("result_info") or {}
            if page >= int(info.get("total_pages") or 1):
                return namespaces
            page += 1

    def create_namespace(
        self, token: str, account_id: str, title: str, *, timeout: float | None = None
    ) -> Namespace:
        resp = self._request(
            "POST",
            f"/accounts/{account_id}/storage/kv/namespaces",
            token,
            operation="create_namespace",
            timeout=timeout,
            json={"title": title},
        )
        body = self._envelope(resp, operation="create_namespace")
        return Namespace.model_validate(body["result"])

    # ── Values ────────────────────────────────────────────────────────

    def put(
        self,
        token: str,
        account_id: str,
        namespace_id: str,
        key: str,
        value: bytes,
        *,
        timeout: float | None = None,
    ) -> None:
        resp = self._request(
            "PUT",
            _values_path(account_id, namespace_id, key),
            token,
            operation="put",
            key=key,
            timeout=timeout,
            content=value,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._envelope(resp, operation="put", key=key)

    def get(
        self,
        token: str,
        account_id: str,
        namespace_id: str,
        key: str,
        *,
        timeout: float | None = None,
    ) -> bytes:
        resp = self._request(
            "GET",
            _values_path(account_id, namespace_id, key),
            token,
            operation="get",
            key=key,
            timeout=timeout,
        )
        if resp.status_code == 404:
            raise NotFoundError("Key not found in KV", operation="get", key=key)
        self._raise_for_status(resp, operation="get", key=key)
        return resp.content

    def delete(
        self,
        token: str,
        account_id: str,
        namespace_id: str,
        key: str,
        *,
        timeout: float | None = None,
    ) -> None:
        resp = self._request(
            "DELETE",
            _values_path(account_id, namespace_id, key),
            token,
            operation="delete",
            key=key,
            timeout=timeout,
        )
        if resp.status_code == 404:
            return
        self._raise_for_status(resp, operation="delete", key=key)

    def list_keys(
        self,
        token: str,
        account_id: str,
        namespace_id: str,
        prefix: str = "",
        *,
        timeout: float | None = None,
    ) -> list[str]:
        """List key names under a prefix, following the cursor across pages."""
        path = f"/accounts/{account_id}/storage/kv/namespaces/{namespace_id}/keys"
        names: list[str] = []
        cursor = ""
        while True:
            params: dict[str, str] = {}
            if prefix:
                params["prefix"] = prefix
            if cursor:
                params["cursor"] = cursor
            resp = self._request(
                "GET", path, token, operation="list_keys", timeout=timeout, params=params
            )
            body = self._envelope(resp, operation="list_keys")
            names.extend(item["name"] for item in body.get("result") or [])
            cursor = (body.get("result_info") or {}).get("cursor") or ""
            if not cursor:
                return names


class NamespaceResolver:
    """Finds or creates the platform namespace inside the caller's account.

    Resolved ids are cached per account. Creation is not locked across
    processes: two first-run callers racing may both create a namespace.
    """

    def __init__(
        self,
        store: KVStore,
        title: str = DEFAULT_NAMESPACE_TITLE,
        cache_ttl: float = 600.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.title = title
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _cached(self, account_id: str) -> str | None:
        with self._lock:
            entry = self._cache.get(account_id)
            if entry is None:
                return None
            namespace_id, expires = entry
            if self._clock() >= expires:
                del self._cache[account_id]
                return None
            return namespace_id

    def _remember(self, account_id: str, namespace_id: str) -> None:
        with self._lock:
            self._cache[account_id] = (namespace_id, self._clock() + self.cache_ttl)

    def invalidate(self, account_id: str | None = None) -> None:
        with self._lock:
            if account_id is None:
                self._cache.clear()
            else:
                self._cache.pop(account_id, None)

    def find(self, token: str, account_id: str, *, timeout: float | None = None) -> str | None:
        """Return the namespace id, or None if it does not exist yet."""
        cached = self._cached(account_id)
        if cached is not None:
            return cached
        for ns in self.store.list_namespaces(token, account_id, timeout=timeout):
            if ns.title == self.title:
                self._remember(account_id, ns.id)
                return ns.id
        return None

    def ensure(self, token: str, account_id: str) -> str:
        """Return the namespace id, creating the namespace if needed."""
        namespace_id = self.find(token, account_id)
        if namespace_id is not None:
            return namespace_id

        logger.info("Creating KV namespace %r for account %s", self.title, account_id)
        try:
            ns = self.store.create_namespace(token, account_id, self.title)
        except RemoteError:
            # Another process may have created it between our list and create.
            namespace_id = self.find(token, account_id)
            if namespace_id is None:
                raise
            return namespace_id
        self._remember(account_id, ns.id)
        return ns.id
