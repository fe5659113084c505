"""
Lark open platform client.
Sends text and interactive card messages, looks up users and fetches
messages through the Lark open API.

Version: 1.0.0
"""
import asyncio
import json
import logging
import re
import time
import uuid
from typing import Any, Dict, Optional, Union

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from ..config.integration_settings import integration_settings
from .call_wrapper import (
    CallError,
    CallTimeoutError,
    CircuitBreakerConfig,
    RetryConfig,
    with_call_wrapper
)

logger = logging.getLogger(__name__)


TENANT_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
MESSAGES_PATH = "/open-apis/im/v1/messages"
USERS_PATH = "/open-apis/contact/v3/users"

# Refresh the tenant token this long before Lark says it expires
TOKEN_REFRESH_MARGIN_SECONDS = 60

# Lark business codes for an invalid or expired access token
INVALID_TOKEN_CODES = frozenset({99991661, 99991663, 99991668})

FALLBACK_USER_NAME = "Lark User"
USER_ID_PATTERN = re.compile(r"^[a-f0-9]{8}$")


# ===========================
# Custom Exceptions
# ===========================

class LarkAPIError(Exception):
    """Base exception for Lark API errors."""

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class LarkRequestError(LarkAPIError):
    """Lark rejected the request itself (4xx or non-zero business code)."""
    pass


class LarkAuthError(LarkAPIError):
    """Lark authentication failed."""
    pass


class LarkRateLimitError(LarkAPIError):
    """Lark rate limit exceeded."""
    pass


class LarkServerError(LarkAPIError):
    """Lark server error (5xx)."""
    pass


# Everything a Lark call can raise once retries are exhausted
LARK_ERRORS = (LarkAPIError, CallError, ClientError, asyncio.TimeoutError)


def receive_id_type_for(receive_id: str) -> str:
    """
    Infer Lark's ``receive_id_type`` from the shape of an id.

    ``ou_`` ids are open ids, ``on_`` union ids, anything with ``@`` an
    email, everything else (``oc_``, ``og_``) a chat id.
    """
    if receive_id.startswith("ou_"):
        return "open_id"
    if receive_id.startswith("on_"):
        return "union_id"
    if "@" in receive_id:
        return "email"
    return "chat_id"


def user_id_type_for(user_id: str) -> str:
    if USER_ID_PATTERN.match(user_id):
        return "user_id"
    if user_id.startswith("on_"):
        return "union_id"
    return "open_id"


def resolve_sender_id(sender_id: Union[str, Dict[str, Any], None]) -> Optional[str]:
    """Pick the most useful id out of a Lark ``sender_id`` object."""
    if isinstance(sender_id, dict):
        return (
            sender_id.get("open_id")
            or sender_id.get("user_id")
            or sender_id.get("union_id")
            or sender_id.get("id")
        )
    return sender_id or None


class LarkClient:
    """
    Async client for the Lark open API.

    Features:
    - Connection pooling through one aiohttp session
    - Tenant access token cached until shortly before expiry
    - Retry with exponential backoff on transient failures
    - Circuit breaker shared by every Lark call
    """

    def __init__(
        self,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None
    ):
        self.app_id = app_id if app_id is not None else integration_settings.lark_app_id
        self.app_secret = (
            app_secret if app_secret is not None
            else integration_settings.get_lark_app_secret()
        )
        self.base_url = (base_url or integration_settings.lark_base_url).rstrip("/")
        self.timeout = timeout or integration_settings.lark_timeout
        self.max_retries = max_retries or integration_settings.lark_max_retries

        self.session: Optional[ClientSession] = None

        self._tenant_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

        self.retry_config = RetryConfig(
            max_attempts=self.max_retries,
            wait_multiplier=0.5,
            wait_min=0.5,
            wait_max=5.0,
            retry_exceptions=(
                ClientError,
                asyncio.TimeoutError,
                CallTimeoutError,
                LarkServerError,
                LarkRateLimitError
            )
        )
        self.circuit_breaker_config = CircuitBreakerConfig(
            fail_max=5,
            timeout=60,
            exclude=[LarkRequestError],
            name="lark_api"
        )

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    async def initialize(self) -> None:
        """Create the HTTP session."""
        if self.session is not None:
            return

        if not self.configured:
            logger.warning("Lark app id or secret not configured; sends will fail")

        self.session = ClientSession(
            timeout=ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(limit=20, limit_per_host=10, ttl_dns_cache=300),
            headers={
                "User-Agent": "PMNextSupportBot/1.0",
                "Content-Type": "application/json; charset=utf-8"
            }
        )
        logger.info(f"✓ Lark client initialized (base_url: {self.base_url})")

    async def cleanup(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("✓ Lark client closed")

    # ===========================
    # Transport
    # ===========================

    async def _http(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        operation: str = "api_request"
    ) -> Dict[str, Any]:
        """Make one HTTP request with retry and circuit breaker."""
        if self.session is None:
            await self.initialize()

        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = f"{self.base_url}{path}"

        @with_call_wrapper(
            service="lark",
            operation=operation,
            retry_config=self.retry_config,
            circuit_breaker_config=self.circuit_breaker_config,
            timeout=self.timeout
        )
        async def execute_request():
            async with self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=headers
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except (ValueError, ClientError):
                    body = {}
                body = body if isinstance(body, dict) else {}

                if response.status in (401, 403):
                    raise LarkAuthError(
                        f"Lark authentication failed: {body.get('msg', response.status)}",
                        code=body.get("code"), status=response.status
                    )
                elif response.status == 429:
                    raise LarkRateLimitError("Lark API rate limit exceeded", status=429)
                elif response.status >= 500:
                    raise LarkServerError(f"Lark server error: {response.status}", status=response.status)

                code = body.get("code", 0 if response.status < 400 else None)
                if code in INVALID_TOKEN_CODES:
                    raise LarkAuthError(
                        f"Lark access token rejected: {body.get('msg')}",
                        code=code, status=response.status
                    )
                if response.status >= 400 or code != 0:
                    raise LarkRequestError(
                        f"Lark API error {code}: {body.get('msg', 'unknown error')}",
                        code=code, status=response.status
                    )

                return body

        return await execute_request()

    async def get_tenant_access_token(self, force_refresh: bool = False) -> str:
        """Tenant access token, fetched once and reused until near expiry."""
        async with self._token_lock:
            if (
                not force_refresh
                and self._tenant_token
                and time.monotonic() < self._token_expires_at
            ):
                return self._tenant_token

            if not self.configured:
                raise LarkAuthError("Lark app id or secret not configured")

            body = await self._http(
                "POST",
                TENANT_TOKEN_PATH,
                json_data={"app_id": self.app_id, "app_secret": self.app_secret},
                operation="tenant_access_token"
            )

            token = body.get("tenant_access_token")
            if not token:
                raise LarkAuthError("Lark did not return a tenant access token")

            expire = int(body.get("expire", 7200))
            self._tenant_token = token
            self._token_expires_at = time.monotonic() + max(expire - TOKEN_REFRESH_MARGIN_SECONDS, 0)
            logger.debug(f"Obtained Lark tenant access token (expires in {expire}s)")
            return token

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        operation: str = "api_request"
    ) -> Dict[str, Any]:
        """Authenticated request; refreshes the token once if Lark rejects it."""
        token = await self.get_tenant_access_token()
        try:
            return await self._http(method, path, params, json_data, token=token, operation=operation)
        except LarkAuthError:
            logger.warning("Lark rejected the tenant token, refreshing once")
            token = await self.get_tenant_access_token(force_refresh=True)
            return await self._http(method, path, params, json_data, token=token, operation=operation)

    # ===========================
    # Messages
    # ===========================

    async def _send(self, receive_id: str, msg_type: str, content: Dict[str, Any]) -> Optional[str]:
        body = await self._request(
            "POST",
            MESSAGES_PATH,
            params={"receive_id_type": receive_id_type_for(receive_id)},
            json_data={
                "receive_id": receive_id,
                "msg_type": msg_type,
                "content": json.dumps(content, ensure_ascii=False),
                "uuid": uuid.uuid4().hex
            },
            operation=f"send_{msg_type}"
        )
        message_id = (body.get("data") or {}).get("message_id")
        logger.info(
            f"✓ Sent {msg_type} message to {receive_id}",
            extra={"chat_id": receive_id, "message_id": message_id}
        )
        return message_id

    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        """
        Send a plain text message.

        Returns:
            Lark message id

        Raises:
            LarkAPIError: Lark rejected or failed the send
            ServiceUnavailableError: Circuit breaker is open
        """
        return await self._send(chat_id, "text", {"text": text})

    async def send_card(self, chat_id: str, card: Dict[str, Any]) -> Optional[str]:
        """Send an interactive card. Raises like ``send_text``."""
        return await self._send(chat_id, "interactive", card)

    async def get_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one message, e.g. a thread parent.

        Returns:
            Message item (``message_id``, ``parent_id``, ``root_id``,
            ``body.content`` ...) or None when it can't be fetched
        """
        try:
            body = await self._request(
                "GET",
                f"{MESSAGES_PATH}/{message_id}",
                operation="get_message"
            )
        except LARK_ERRORS as e:
            logger.warning(f"Could not fetch Lark message {message_id}: {e}")
            return None

        items = (body.get("data") or {}).get("items") or []
        return items[0] if items else None

    # ===========================
    # Users
    # ===========================

    async def get_user_info(
        self,
        sender_id: Union[str, Dict[str, Any], None]
    ) -> Optional[Dict[str, Any]]:
        """
        Look up a user's profile.

        Returns:
            ``{user_id, name, email, mobile, avatar}``; a fallback profile
            named "Lark User" when the lookup fails; None without an id
        """
        user_id = resolve_sender_id(sender_id)
        if not user_id:
            return None

        try:
            body = await self._request(
                "GET",
                f"{USERS_PATH}/{user_id}",
                params={"user_id_type": user_id_type_for(user_id)},
                operation="get_user_info"
            )
            user = (body.get("data") or {}).get("user") or {}
            if user:
                return {
                    "user_id": user_id,
                    "name": user.get("name") or "Unknown User",
                    "email": user.get("email"),
                    "mobile": user.get("mobile"),
                    "avatar": (user.get("avatar") or {}).get("avatar_240"),
                    "fallback": False
                }
        except LARK_ERRORS as e:
            logger.warning(f"User info lookup failed for {user_id}: {e}")

        return {
            "user_id": user_id,
            "name": FALLBACK_USER_NAME,
            "email": None,
            "mobile": None,
            "avatar": None,
            "fallback": True
        }


__all__ = [
    'LarkClient',
    'LarkAPIError',
    'LarkRequestError',
    'LarkAuthError',
    'LarkRateLimitError',
    'LarkServerError',
    'LARK_ERRORS',
    'receive_id_type_for',
    'user_id_type_for',
    'resolve_sender_id',
    'FALLBACK_USER_NAME',
]
