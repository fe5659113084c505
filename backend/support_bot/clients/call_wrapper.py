"""
Outbound call wrapper with retry logic, circuit breakers and timing logs.
Provides standardized resilience for calls to Lark and the LLM API.

Version: 1.0.0
"""
import asyncio
import functools
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Callable, Coroutine, Dict, Optional, Sequence, TypeVar

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
from aiobreaker import CircuitBreaker, CircuitBreakerError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CallError(Exception):
    """Base exception for wrapped outbound calls."""
    pass


class CallTimeoutError(CallError):
    """Outbound call exceeded its timeout."""
    pass


class ServiceUnavailableError(CallError):
    """Circuit breaker is open for the service."""

    def __init__(self, service: str, message: Optional[str] = None):
        self.service = service
        super().__init__(message or f"Service temporarily unavailable: {service}")


# ===========================
# Circuit Breaker Configuration
# ===========================

class CircuitBreakerConfig:
    """Configuration for circuit breakers."""

    def __init__(
        self,
        fail_max: int = 5,
        timeout: int = 60,
        exclude: Optional[Sequence[type]] = None,
        name: Optional[str] = None
    ):
        """
        Initialize circuit breaker configuration.

        Args:
            fail_max: Maximum failures before opening circuit
            timeout: Seconds before attempting to close circuit
            exclude: Exception types that do not count as failures
            name: Circuit breaker name
        """
        self.fail_max = fail_max
        self.timeout = timeout
        self.exclude = list(exclude or [])
        self.name = name or "default"


_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    service: str,
    config: Optional[CircuitBreakerConfig] = None
) -> CircuitBreaker:
    """
    Get or create the circuit breaker for a service.

    Args:
        service: Service identifier ("lark", "llm")
        config: Circuit breaker configuration, used on first creation only

    Returns:
        Async circuit breaker instance
    """
    if service not in _circuit_breakers:
        if config is None:
            config = CircuitBreakerConfig(name=service)

        _circuit_breakers[service] = CircuitBreaker(
            fail_max=config.fail_max,
            timeout_duration=timedelta(seconds=config.timeout),
            exclude=config.exclude,
            name=config.name
        )

        logger.info(
            f"Created circuit breaker for '{service}': "
            f"fail_max={config.fail_max}, timeout={config.timeout}s"
        )

    return _circuit_breakers[service]


def reset_circuit_breaker(service: str) -> None:
    """Close the circuit breaker for a service, if one exists."""
    breaker = _circuit_breakers.get(service)
    if breaker is not None:
        breaker.close()
        logger.info(f"Reset circuit breaker for '{service}'")


def reset_all_circuit_breakers() -> None:
    for service in list(_circuit_breakers):
        reset_circuit_breaker(service)


# ===========================
# Retry Configuration
# ===========================

class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_attempts: int = 3,
        wait_multiplier: float = 1.0,
        wait_min: float = 1.0,
        wait_max: float = 10.0,
        retry_exceptions: tuple = (Exception,)
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum attempts, including the first
            wait_multiplier: Exponential backoff multiplier
            wait_min: Minimum wait time between retries (seconds)
            wait_max: Maximum wait time between retries (seconds)
            retry_exceptions: Exception types to retry on
        """
        self.max_attempts = max_attempts
        self.wait_multiplier = wait_multiplier
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.retry_exceptions = retry_exceptions


def create_retry_decorator(config: RetryConfig):
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.wait_multiplier,
            min=config.wait_min,
            max=config.wait_max
        ),
        retry=retry_if_exception_type(config.retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


# ===========================
# Call Context
# ===========================

@asynccontextmanager
async def call_context(
    service: str,
    operation: str,
    chat_id: Optional[str] = None,
    **metadata
):
    """
    Log start, completion and failure of one outbound call.

    Example:
        async with call_context('lark', 'send_text', chat_id=chat_id):
            await client.post(...)
    """
    start_time = time.time()
    log_context = {
        "service": service,
        "operation": operation,
        "chat_id": chat_id,
        **metadata
    }

    logger.debug(f"Call started: {service}.{operation}", extra=log_context)

    try:
        yield log_context

        duration = time.time() - start_time
        logger.info(
            f"Call completed: {service}.{operation} (duration: {duration:.3f}s)",
            extra={**log_context, "duration_seconds": duration, "status": "success"}
        )

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Call failed: {service}.{operation} "
            f"(duration: {duration:.3f}s, error: {e})",
            extra={
                **log_context,
                "duration_seconds": duration,
                "status": "error",
                "error_type": type(e).__name__
            }
        )
        raise


# ===========================
# Call Wrapper Decorator
# ===========================

def with_call_wrapper(
    service: str,
    operation: Optional[str] = None,
    retry_config: Optional[RetryConfig] = None,
    circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
    timeout: Optional[float] = None
):
    """
    Decorator adding timeout, retry and circuit breaking to an async call.

    Retries happen inside the breaker, so one logical call that exhausts
    its retries counts as a single breaker failure. An open breaker
    raises ServiceUnavailableError without calling the function.

    Example:
        @with_call_wrapper('llm', 'complete', timeout=30.0)
        async def complete(...):
            ...
    """
    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        op_name = operation or func.__name__
        retry_decorator = create_retry_decorator(retry_config) if retry_config else None

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            chat_id = kwargs.get('chat_id')
            breaker = get_circuit_breaker(service, circuit_breaker_config)

            async def execute_with_timeout():
                if timeout:
                    try:
                        return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
                    except asyncio.TimeoutError:
                        raise CallTimeoutError(
                            f"'{service}' operation '{op_name}' timed out after {timeout}s"
                        )
                return await func(*args, **kwargs)

            attempt = retry_decorator(execute_with_timeout) if retry_decorator else execute_with_timeout

            async with call_context(service, op_name, chat_id=chat_id):
                try:
                    return await breaker.call_async(attempt)
                except CircuitBreakerError as e:
                    logger.warning(
                        f"Circuit breaker open for '{service}': {e}",
                        extra={
                            "service": service,
                            "operation": op_name,
                            "circuit_breaker_state": str(breaker.current_state)
                        }
                    )
                    raise ServiceUnavailableError(service) from e

        return wrapper

    return decorator


def get_breaker_metrics(service: Optional[str] = None) -> Dict[str, Any]:
    """
    Circuit breaker state for one service or all of them.
    """
    def describe(breaker: CircuitBreaker) -> Dict[str, Any]:
        return {
            "state": breaker.current_state.name.lower(),
            "fail_counter": breaker.fail_counter,
            "fail_max": breaker.fail_max
        }

    if service:
        breaker = _circuit_breakers.get(service)
        if breaker is None:
            return {"service": service, "error": "No circuit breaker found"}
        return {"service": service, **describe(breaker)}

    return {name: describe(breaker) for name, breaker in _circuit_breakers.items()}


__all__ = [
    'CallError',
    'CallTimeoutError',
    'ServiceUnavailableError',
    'CircuitBreakerConfig',
    'RetryConfig',
    'get_circuit_breaker',
    'reset_circuit_breaker',
    'reset_all_circuit_breakers',
    'create_retry_decorator',
    'call_context',
    'with_call_wrapper',
    'get_breaker_metrics',
]
