"""
Bounded retry for eventually-consistent KV reads.

A value written moments ago may not be visible yet, so reads retry a few
times with a fixed delay. The bound is small and linear:
worst case is (timeout x attempts) + (delay x (attempts - 1)).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from xanthus.vault.errors import NotFoundError, RemoteError, RequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fixed_delay(seconds: float) -> Callable[[int], float]:
    """Delay function returning the same wait after every attempt."""

    def _delay(attempt: int) -> float:
        return seconds

    return _delay


def is_retryable(exc: BaseException) -> bool:
    """NotFound and transport errors may clear up; malformed requests will not."""
    if isinstance(exc, RequestError):
        return False
    return isinstance(exc, NotFoundError | RemoteError)


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts, a delay function and a retryable-error predicate."""

    max_attempts: int = 3
    delay: Callable[[int], float] = field(default_factory=lambda: fixed_delay(2.0))
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        operation: str = "",
        deadline: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn`` until it succeeds, fails non-retryably, or attempts run out.

        ``deadline`` is a ``clock()`` timestamp; no sleep is started that
        would end past it. The last error is re-raised unchanged.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                if not self.retryable(e):
                    raise
                logger.info("%s: attempt %d/%d failed: %s", operation or "retry", attempt, attempts, e)
                if attempt == attempts:
                    logger.warning("%s: all %d attempts failed", operation or "retry", attempts)
                    raise
                wait = self.delay(attempt)
                if deadline is not None and self.clock() + wait > deadline:
                    logger.warning("%s: deadline reached after %d attempts", operation or "retry", attempt)
                    raise
                self.sleep(wait)
            else:
                if attempt > 1:
                    logger.info("%s: succeeded on attempt %d", operation or "retry", attempt)
                return result
        raise AssertionError("unreachable")


class ConsistencyRetrier:
    """Wraps a store's ``get`` with a RetryPolicy.

    With a ``deadline``, each attempt's HTTP timeout is capped at the time
    remaining, and no attempt starts once it has passed.
    """

    def __init__(self, store: Any, policy: RetryPolicy | None = None) -> None:
        self.store = store
        self.policy = policy or RetryPolicy()

    def timeout_for(self, deadline: float | None, *, key: str = "") -> float | None:
        """Per-call timeout for a request made now. None means the store's default."""
        if deadline is None:
            return None
        remaining = deadline - self.policy.clock()
        if remaining <= 0:
            raise RemoteError("Deadline exceeded before KV call", operation="kv_get", key=key)
        return min(self.store.timeout, remaining)

    def get(
        self,
        token: str,
        account_id: str,
        namespace_id: str,
        key: str,
        *,
        deadline: float | None = None,
    ) -> bytes:
        def attempt() -> bytes:
            return self.store.get(
                token,
                account_id,
                namespace_id,
                key,
                timeout=self.timeout_for(deadline, key=key),
            )

        return self.policy.call(attempt, operation=f"kv_get {key}", deadline=deadline)
