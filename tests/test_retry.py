"""Test bounded retries and per-attempt timeouts."""
import asyncio

import httpx
import pytest

from core.errors import ValidationError, VendorCallError
from core.resilience import RetryOutcome, RetryPolicy, as_vendor_error, call_with_retry

NO_DELAY = RetryPolicy(max_retries=3, backoff_base=0.0, backoff_max=0.0)
SHORT_DELAY = RetryPolicy(max_retries=3, backoff_base=0.05, backoff_max=0.05)


def _flaky(failures, error_factory, result="ok"):
    calls = {"n": 0}

    async def fn():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise error_factory()
        return result

    return fn, calls


def test_backoff_is_bounded():
    policy = RetryPolicy(max_retries=5, backoff_base=1.0, backoff_max=5.0)
    assert [policy.backoff(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    fn, calls = _flaky(2, lambda: VendorCallError.from_status(503, None))
    outcome = RetryOutcome()
    assert await call_with_retry(fn, NO_DELAY, timeout=1.0, outcome=outcome) == "ok"
    assert calls["n"] == 3
    assert outcome.attempts == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    fn, calls = _flaky(5, lambda: VendorCallError.from_status(404, {"error": "nope"}))
    with pytest.raises(VendorCallError) as exc_info:
        await call_with_retry(fn, NO_DELAY, timeout=1.0)
    assert calls["n"] == 1
    assert exc_info.value.vendor_status == 404


@pytest.mark.asyncio
async def test_other_errors_propagate_immediately():
    fn, calls = _flaky(5, lambda: ValidationError("bad input"))
    with pytest.raises(ValidationError):
        await call_with_retry(fn, NO_DELAY, timeout=1.0)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_retries_exhausted():
    fn, calls = _flaky(10, lambda: VendorCallError.from_status(500, None))
    outcome = RetryOutcome()
    with pytest.raises(VendorCallError):
        await call_with_retry(fn, NO_DELAY, timeout=1.0, outcome=outcome)
    assert calls["n"] == 4
    assert outcome.attempts == 4


@pytest.mark.asyncio
async def test_retry_disabled_means_one_attempt():
    fn, calls = _flaky(10, lambda: VendorCallError.from_status(500, None))
    with pytest.raises(VendorCallError):
        await call_with_retry(fn, NO_DELAY, timeout=1.0, retry_enabled=False)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_network_errors_become_transient_vendor_errors():
    fn, calls = _flaky(1, lambda: httpx.ConnectError("refused"))
    assert await call_with_retry(fn, NO_DELAY, timeout=1.0) == "ok"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_attempt_timeout():
    async def hang():
        await asyncio.sleep(10)

    policy = RetryPolicy(max_retries=1, backoff_base=0.0, backoff_max=0.0)
    outcome = RetryOutcome()
    with pytest.raises(VendorCallError) as exc_info:
        await call_with_retry(hang, policy, timeout=0.05, outcome=outcome)
    assert exc_info.value.status_code == 504
    assert exc_info.value.code.value == "vendor_timeout"
    assert outcome.attempts == 2


def test_as_vendor_error_ignores_unrelated():
    assert as_vendor_error(KeyError("x"), 1.0) is None
    assert as_vendor_error(asyncio.TimeoutError(), 2.0).status_code == 504


@pytest.mark.asyncio
async def test_deadline_caps_attempts():
    async def hang():
        await asyncio.sleep(10)

    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome = RetryOutcome()
    with pytest.raises(VendorCallError) as exc_info:
        await call_with_retry(hang, SHORT_DELAY, timeout=5.0, outcome=outcome, deadline=0.1)
    assert exc_info.value.status_code == 504
    assert outcome.attempts == 1
    assert loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_backoff_past_deadline_is_skipped():
    fn, calls = _flaky(10, lambda: VendorCallError.from_status(503, None))
    slow_backoff = RetryPolicy(max_retries=3, backoff_base=10.0, backoff_max=10.0)
    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(VendorCallError) as exc_info:
        await call_with_retry(fn, slow_backoff, timeout=1.0, deadline=2.0)
    assert exc_info.value.vendor_status == 503
    assert calls["n"] == 1
    assert loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_retries_fit_inside_deadline():
    fn, calls = _flaky(2, lambda: VendorCallError.from_status(502, None))
    assert await call_with_retry(fn, NO_DELAY, timeout=1.0, deadline=5.0) == "ok"
    assert calls["n"] == 3
