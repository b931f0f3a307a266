"""
Bounded retry with exponential backoff for vendor calls.

Only transient failures are retried:
- VendorCallError with transient=True (timeouts, network errors, 5xx, 429)

Everything else (4xx, validation, decryption, adapter bugs) fails on the
first attempt. Each attempt runs under its own timeout, and an optional
overall deadline caps attempts plus backoff.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
import asyncio
import logging

import httpx

from core.errors import VendorCallError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 15.0

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt is 0-based)."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)


@dataclass
class RetryOutcome:
    attempts: int = 0


def as_vendor_error(exc: BaseException, timeout: float) -> VendorCallError | None:
    """Map low-level transport failures to transient VendorCallErrors."""
    if isinstance(exc, VendorCallError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return VendorCallError.timeout(timeout)
    if isinstance(exc, httpx.TransportError):
        return VendorCallError(f"Network error calling vendor: {type(exc).__name__}: {exc}", transient=True)
    return None


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    timeout: float,
    retry_enabled: bool = True,
    outcome: RetryOutcome | None = None,
    deadline: float | None = None,
) -> T:
    """Run `func` with a per-attempt timeout, retrying transient failures.

    `deadline` bounds the whole call, attempts and backoff included: the
    last attempt is cut to the remaining budget, and a retry whose backoff
    would overrun it is not made. `outcome.attempts` is updated as attempts
    are made, so callers can report it even when the call ultimately fails.
    """
    outcome = outcome if outcome is not None else RetryOutcome()
    max_attempts = 1 + (max(policy.max_retries, 0) if retry_enabled else 0)
    loop = asyncio.get_running_loop()
    expires_at = loop.time() + deadline if deadline is not None else None

    for attempt in range(max_attempts):
        outcome.attempts = attempt + 1
        attempt_timeout = timeout
        if expires_at is not None:
            attempt_timeout = max(min(timeout, expires_at - loop.time()), 0.0)
        try:
            return await asyncio.wait_for(func(), timeout=attempt_timeout)
        except Exception as exc:
            error = as_vendor_error(exc, attempt_timeout)
            if error is None:
                raise
            delay = policy.backoff(attempt)
            retryable = error.transient and attempt + 1 < max_attempts
            if retryable and expires_at is not None and loop.time() + delay >= expires_at:
                logger.warning(
                    "Transient vendor failure (%s), no retry: %.2fs deadline reached",
                    error.message, deadline,
                )
                retryable = False
            if not retryable:
                if error is exc:
                    raise
                raise error from exc
            logger.warning(
                "Transient vendor failure (%s), retry %d/%d in %.2fs",
                error.message, attempt + 1, max_attempts - 1, delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("retry loop exited without a result")
