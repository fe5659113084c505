"""
Tests for the outbound call wrapper.
"""
import asyncio

import pytest

from support_bot.clients.call_wrapper import (
    CallTimeoutError,
    CircuitBreakerConfig,
    RetryConfig,
    ServiceUnavailableError,
    get_breaker_metrics,
    with_call_wrapper
)


FAST_RETRY = dict(wait_multiplier=0, wait_min=0, wait_max=0)


@pytest.mark.unit
async def test_transient_errors_are_retried():
    calls = []

    @with_call_wrapper(
        "wrapper_retry",
        retry_config=RetryConfig(max_attempts=3, retry_exceptions=(ConnectionError,), **FAST_RETRY)
    )
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.unit
async def test_timeout_raises_call_timeout():
    @with_call_wrapper("wrapper_timeout", timeout=0.01)
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(CallTimeoutError):
        await slow()


@pytest.mark.unit
async def test_breaker_opens_after_fail_max():
    calls = []

    @with_call_wrapper(
        "wrapper_breaker",
        circuit_breaker_config=CircuitBreakerConfig(fail_max=2, timeout=60, name="wrapper_breaker")
    )
    async def broken():
        calls.append(1)
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        await broken()
    with pytest.raises(ServiceUnavailableError):
        await broken()
    with pytest.raises(ServiceUnavailableError):
        await broken()

    assert len(calls) == 2
    assert get_breaker_metrics("wrapper_breaker")["state"] == "open"


@pytest.mark.unit
async def test_excluded_errors_do_not_count():
    @with_call_wrapper(
        "wrapper_excluded",
        circuit_breaker_config=CircuitBreakerConfig(fail_max=1, exclude=[ValueError], name="wrapper_excluded")
    )
    async def rejected():
        raise ValueError("bad request")

    for _ in range(3):
        with pytest.raises(ValueError):
            await rejected()

    metrics = get_breaker_metrics("wrapper_excluded")
    assert metrics["state"] == "closed"
    assert metrics["fail_counter"] == 0


@pytest.mark.unit
def test_breaker_metrics_for_unknown_service():
    assert get_breaker_metrics("never_called") == {
        "service": "never_called",
        "error": "No circuit breaker found"
    }
