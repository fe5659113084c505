"""
Tests for the LLM completion client.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError, RateLimitError

from support_bot.clients.call_wrapper import RetryConfig
from support_bot.clients.llm_client import (
    LLMClient,
    LLMError,
    LLMNotConfiguredError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
    RequestThrottle
)
from support_bot.config.integration_settings import integration_settings


REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion("  An answer.  "))
    return client


@pytest.fixture
def llm(openai_client):
    return LLMClient(
        api_key="sk-test",
        model="gpt-test",
        timeout=5,
        max_retries=1,
        max_concurrent=2,
        client=openai_client
    )


# ===========================
# Completions
# ===========================

@pytest.mark.unit
async def test_answer_builds_messages(llm, openai_client):
    history = [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello!"}
    ]

    answer = await llm.answer("You are the PM-Next assistant.", history, "how do I add a job?")

    assert answer == "An answer."
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["stream"] is False
    assert kwargs["messages"] == [
        {"role": "system", "content": "You are the PM-Next assistant."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello!"},
        {"role": "user", "content": "how do I add a job?"}
    ]


@pytest.mark.unit
async def test_extract_uses_extraction_settings(llm, openai_client):
    await llm.extract("Return JSON.", "Ticket: export fails")

    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["temperature"] == integration_settings.openai_extraction_temperature
    assert kwargs["max_tokens"] == integration_settings.openai_extraction_max_tokens
    assert kwargs["messages"][1] == {"role": "user", "content": "Ticket: export fails"}


@pytest.mark.unit
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_empty_completion(llm, openai_client, content):
    openai_client.chat.completions.create.return_value = completion(content)

    with pytest.raises(LLMResponseError):
        await llm.answer("system", [], "question")


@pytest.mark.unit
async def test_not_configured():
    llm = LLMClient(api_key="", model="gpt-test")

    assert not llm.configured
    with pytest.raises(LLMNotConfiguredError):
        await llm.answer("system", [], "question")


# ===========================
# Failures
# ===========================

@pytest.mark.unit
async def test_timeout_is_mapped(llm, openai_client):
    openai_client.chat.completions.create.side_effect = APITimeoutError(request=REQUEST)

    with pytest.raises(LLMTimeoutError):
        await llm.answer("system", [], "question")


@pytest.mark.unit
async def test_rate_limit_is_mapped(llm, openai_client):
    openai_client.chat.completions.create.side_effect = RateLimitError(
        "rate limited",
        response=httpx.Response(429, request=REQUEST),
        body=None
    )

    with pytest.raises(LLMRateLimitError):
        await llm.answer("system", [], "question")


@pytest.mark.unit
async def test_connection_errors_are_retried(llm, openai_client):
    llm.retry_config = RetryConfig(
        max_attempts=2,
        wait_multiplier=0,
        wait_min=0,
        wait_max=0,
        retry_exceptions=(APIConnectionError, APITimeoutError)
    )
    openai_client.chat.completions.create.side_effect = [
        APIConnectionError(request=REQUEST),
        completion("Recovered.")
    ]

    assert await llm.answer("system", [], "question") == "Recovered."
    assert openai_client.chat.completions.create.await_count == 2


@pytest.mark.unit
async def test_provider_errors_are_llm_errors(llm, openai_client):
    openai_client.chat.completions.create.side_effect = APIConnectionError(request=REQUEST)

    with pytest.raises(LLMError):
        await llm.answer("system", [], "question")


# ===========================
# Throttle and status
# ===========================

@pytest.mark.unit
async def test_throttle_bounds_concurrency():
    throttle = RequestThrottle(max_concurrent=1)
    release = asyncio.Event()

    async def hold():
        async with throttle.slot():
            await release.wait()

    first = asyncio.create_task(hold())
    second = asyncio.create_task(hold())
    await asyncio.sleep(0)

    assert throttle.status() == {
        "active_requests": 1,
        "queued_requests": 1,
        "max_concurrent_requests": 1
    }

    release.set()
    await asyncio.gather(first, second)
    assert throttle.active == 0
    assert throttle.queued == 0


@pytest.mark.unit
def test_get_status(llm):
    assert llm.get_status() == {
        "configured": True,
        "model": "gpt-test",
        "active_requests": 0,
        "queued_requests": 0,
        "max_concurrent_requests": 2
    }
