"""
LLM completion client.
Wraps the OpenAI chat completions API with a bounded request throttle,
retries, a circuit breaker and a small exception hierarchy.

Version: 1.0.0
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APIError,
    APITimeoutError,
    InternalServerError,
    RateLimitError
)

from ..config.integration_settings import integration_settings
from .call_wrapper import (
    CallTimeoutError,
    CircuitBreakerConfig,
    RetryConfig,
    ServiceUnavailableError,
    with_call_wrapper
)

logger = logging.getLogger(__name__)


# ===========================
# Custom Exceptions
# ===========================

class LLMError(Exception):
    """Base exception for LLM errors."""
    pass


class LLMNotConfiguredError(LLMError):
    """No API key configured."""
    pass


class LLMTimeoutError(LLMError):
    """Completion took too long."""
    pass


class LLMRateLimitError(LLMError):
    """Provider rate limit exceeded."""
    pass


class LLMResponseError(LLMError):
    """Provider returned no usable content."""
    pass


# ===========================
# Request Throttle
# ===========================

class RequestThrottle:
    """
    Bounded concurrency for completion requests.

    Requests beyond ``max_concurrent`` wait their turn; the active and
    queued counts are reported for the analytics endpoint.
    """

    def __init__(self, max_concurrent: int = 3):
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.active = 0
        self.queued = 0

    @asynccontextmanager
    async def slot(self):
        self.queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.queued -= 1

        self.active += 1
        try:
            yield
        finally:
            self.active -= 1
            self._semaphore.release()

    def status(self) -> Dict[str, int]:
        return {
            "active_requests": self.active,
            "queued_requests": self.queued,
            "max_concurrent_requests": self.max_concurrent
        }


class LLMClient:
    """
    Async chat completion client.

    Features:
    - One AsyncOpenAI client per process
    - Throttled to ``max_concurrent_requests`` parallel completions
    - Retry on connection, timeout and server errors
    - Circuit breaker shared by every LLM call
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self.api_key = api_key if api_key is not None else integration_settings.get_openai_api_key()
        self.model = model or integration_settings.openai_model
        self.base_url = base_url or integration_settings.openai_base_url
        self.timeout = timeout or integration_settings.openai_timeout
        self.max_retries = max_retries or integration_settings.openai_max_retries

        self.client: Optional[AsyncOpenAI] = client
        self.throttle = RequestThrottle(
            max_concurrent or integration_settings.max_concurrent_requests
        )

        self.retry_config = RetryConfig(
            max_attempts=self.max_retries,
            wait_multiplier=1.0,
            wait_min=1.0,
            wait_max=8.0,
            retry_exceptions=(APIConnectionError, APITimeoutError, InternalServerError)
        )
        self.circuit_breaker_config = CircuitBreakerConfig(
            fail_max=5,
            timeout=60,
            exclude=[RateLimitError],
            name="llm_api"
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self.client is not None

    async def initialize(self) -> None:
        if self.client is not None:
            return

        if not self.api_key:
            logger.warning("OpenAI API key not configured; LLM answers disabled")
            return

        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=float(self.timeout),
            max_retries=0
        )
        logger.info(f"✓ LLM client initialized (model: {self.model})")

    async def cleanup(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None
            logger.info("✓ LLM client closed")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        operation: str = "complete"
    ) -> str:
        """
        Run one chat completion.

        Returns:
            Assistant message content

        Raises:
            LLMNotConfiguredError: No API key
            LLMTimeoutError: Timed out after retries
            LLMRateLimitError: Provider rate limit
            LLMResponseError: Empty completion
            LLMError: Any other provider failure or an open circuit
        """
        if self.client is None:
            await self.initialize()
        if self.client is None:
            raise LLMNotConfiguredError("OpenAI API key not configured")

        max_tokens = max_tokens or integration_settings.openai_max_tokens
        if temperature is None:
            temperature = integration_settings.openai_temperature

        @with_call_wrapper(
            service="llm",
            operation=operation,
            retry_config=self.retry_config,
            circuit_breaker_config=self.circuit_breaker_config,
            timeout=self.timeout
        )
        async def execute_completion():
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                stream=False
            )

        async with self.throttle.slot():
            try:
                completion = await execute_completion()
            except (APITimeoutError, CallTimeoutError) as e:
                raise LLMTimeoutError(f"LLM request timeout: {e}") from e
            except RateLimitError as e:
                raise LLMRateLimitError(f"LLM rate limit: {e}") from e
            except ServiceUnavailableError as e:
                raise LLMError(str(e)) from e
            except APIError as e:
                raise LLMError(f"LLM request failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise LLMResponseError("LLM returned an empty completion")
        return content.strip()

    async def answer(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str
    ) -> str:
        """Answer a user message given the system prompt and prior turns."""
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(history)
        messages.append({"role": "user", "content": user_message})
        return await self.complete(messages, operation="answer")

    async def extract(self, system_prompt: str, user_content: str) -> str:
        """Low-temperature structured extraction (expected to return JSON)."""
        return await self.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content}
            ],
            max_tokens=integration_settings.openai_extraction_max_tokens,
            temperature=integration_settings.openai_extraction_temperature,
            operation="extract"
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "configured": self.configured,
            "model": self.model,
            **self.throttle.status()
        }


__all__ = [
    'LLMClient',
    'RequestThrottle',
    'LLMError',
    'LLMNotConfiguredError',
    'LLMTimeoutError',
    'LLMRateLimitError',
    'LLMResponseError',
]
