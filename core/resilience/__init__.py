"""
Integration Hub Resilience: bounded retries for vendor calls.
"""
from core.resilience.retry import (
    RetryOutcome,
    RetryPolicy,
    as_vendor_error,
    call_with_retry,
)

__all__ = [
    "RetryOutcome",
    "RetryPolicy",
    "as_vendor_error",
    "call_with_retry",
]
