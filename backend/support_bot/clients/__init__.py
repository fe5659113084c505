"""
Outbound clients package.
Lark open platform and LLM completion clients plus the shared call wrapper.

Version: 1.0.0
"""
from .call_wrapper import (
    CallError,
    CallTimeoutError,
    ServiceUnavailableError,
    get_breaker_metrics,
)
from .lark_client import (
    LarkClient,
    LarkAPIError,
    LarkRequestError,
    LarkAuthError,
    LarkRateLimitError,
    LarkServerError,
    LARK_ERRORS,
)
from .llm_client import (
    LLMClient,
    LLMError,
    LLMNotConfiguredError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMResponseError,
)

__all__ = [
    'CallError',
    'CallTimeoutError',
    'ServiceUnavailableError',
    'get_breaker_metrics',
    'LarkClient',
    'LarkAPIError',
    'LarkRequestError',
    'LarkAuthError',
    'LarkRateLimitError',
    'LarkServerError',
    'LARK_ERRORS',
    'LLMClient',
    'LLMError',
    'LLMNotConfiguredError',
    'LLMTimeoutError',
    'LLMRateLimitError',
    'LLMResponseError',
]
