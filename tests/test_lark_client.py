"""
Tests for the Lark open API client.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from support_bot.clients.lark_client import (
    FALLBACK_USER_NAME,
    LARK_ERRORS,
    MESSAGES_PATH,
    TENANT_TOKEN_PATH,
    LarkAPIError,
    LarkAuthError,
    LarkClient,
    LarkRateLimitError,
    LarkRequestError,
    LarkServerError,
    receive_id_type_for,
    resolve_sender_id,
    user_id_type_for
)


TOKEN_BODY = {"code": 0, "tenant_access_token": "t-token", "expire": 7200}


@pytest.fixture
def lark():
    return LarkClient(
        app_id="cli_test",
        app_secret="secret",
        base_url="https://open.larksuite.com/",
        timeout=5,
        max_retries=1
    )


def fake_session(status, body):
    """aiohttp-like session whose request() yields one canned response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)

    session = MagicMock()
    session.request.return_value.__aenter__.return_value = response
    return session


# ===========================
# Id helpers
# ===========================

@pytest.mark.unit
def test_receive_id_type_for():
    assert receive_id_type_for("ou_123") == "open_id"
    assert receive_id_type_for("on_123") == "union_id"
    assert receive_id_type_for("someone@example.com") == "email"
    assert receive_id_type_for("oc_123") == "chat_id"


@pytest.mark.unit
def test_user_id_type_for():
    assert user_id_type_for("a1b2c3d4") == "user_id"
    assert user_id_type_for("on_123") == "union_id"
    assert user_id_type_for("ou_123") == "open_id"


@pytest.mark.unit
def test_resolve_sender_id():
    assert resolve_sender_id({"open_id": "ou_1", "user_id": "a1b2c3d4"}) == "ou_1"
    assert resolve_sender_id({"union_id": "on_1"}) == "on_1"
    assert resolve_sender_id("ou_2") == "ou_2"
    assert resolve_sender_id("") is None
    assert resolve_sender_id(None) is None


@pytest.mark.unit
def test_error_hierarchy():
    for error_type in (LarkRequestError, LarkAuthError, LarkRateLimitError, LarkServerError):
        assert issubclass(error_type, LarkAPIError)

    error = LarkRequestError("bad chat", code=230001, status=400)
    assert isinstance(error, LARK_ERRORS)
    assert error.code == 230001
    assert error.status == 400


@pytest.mark.unit
def test_configuration(lark):
    assert lark.configured
    assert lark.base_url == "https://open.larksuite.com"
    assert not LarkClient(app_id="", app_secret="", base_url="https://x").configured


# ===========================
# Transport
# ===========================

@pytest.mark.unit
async def test_http_returns_body(lark):
    lark.session = fake_session(200, {"code": 0, "data": {"message_id": "om_1"}})

    body = await lark._http("GET", "/open-apis/test", params={"a": "b"}, token="t-token")

    assert body["data"]["message_id"] == "om_1"
    kwargs = lark.session.request.call_args.kwargs
    assert kwargs["url"] == "https://open.larksuite.com/open-apis/test"
    assert kwargs["headers"] == {"Authorization": "Bearer t-token"}


@pytest.mark.unit
@pytest.mark.parametrize("status, body, error_type", [
    (401, {"code": 99991661, "msg": "bad token"}, LarkAuthError),
    (429, {}, LarkRateLimitError),
    (502, {}, LarkServerError),
    (200, {"code": 99991663, "msg": "token expired"}, LarkAuthError),
    (200, {"code": 230001, "msg": "invalid receive_id"}, LarkRequestError),
    (400, {"msg": "bad request"}, LarkRequestError),
])
async def test_http_maps_failures(lark, status, body, error_type):
    lark.session = fake_session(status, body)

    with pytest.raises(error_type) as excinfo:
        await lark._http("POST", "/open-apis/test")

    assert excinfo.value.status == status


# ===========================
# Tenant token
# ===========================

@pytest.mark.unit
async def test_tenant_token_is_cached(lark):
    lark._http = AsyncMock(return_value=TOKEN_BODY)

    assert await lark.get_tenant_access_token() == "t-token"
    assert await lark.get_tenant_access_token() == "t-token"

    lark._http.assert_awaited_once()
    assert lark._http.await_args.args[:2] == ("POST", TENANT_TOKEN_PATH)
    assert lark._http.await_args.kwargs["json_data"] == {"app_id": "cli_test", "app_secret": "secret"}


@pytest.mark.unit
async def test_tenant_token_refresh(lark):
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, {**TOKEN_BODY, "tenant_access_token": "t-new"}])

    await lark.get_tenant_access_token()

    assert await lark.get_tenant_access_token(force_refresh=True) == "t-new"


@pytest.mark.unit
async def test_tenant_token_errors():
    unconfigured = LarkClient(app_id="", app_secret="", base_url="https://x")
    with pytest.raises(LarkAuthError):
        await unconfigured.get_tenant_access_token()

    lark = LarkClient(app_id="cli_test", app_secret="secret", base_url="https://x")
    lark._http = AsyncMock(return_value={"code": 0})
    with pytest.raises(LarkAuthError):
        await lark.get_tenant_access_token()


@pytest.mark.unit
async def test_rejected_token_is_refreshed_once(lark):
    lark._http = AsyncMock(side_effect=[
        TOKEN_BODY,
        LarkAuthError("token expired", code=99991663),
        {**TOKEN_BODY, "tenant_access_token": "t-new"},
        {"code": 0, "data": {"message_id": "om_1"}},
    ])

    assert await lark.send_text("oc_chat", "hello") == "om_1"
    assert lark._http.await_args.kwargs["token"] == "t-new"


# ===========================
# Messages
# ===========================

@pytest.mark.unit
async def test_send_text_payload(lark):
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, {"code": 0, "data": {"message_id": "om_1"}}])

    message_id = await lark.send_text("oc_chat", "Héllo **there**")

    assert message_id == "om_1"
    method, path, params, json_data = lark._http.await_args.args
    assert (method, path) == ("POST", MESSAGES_PATH)
    assert params == {"receive_id_type": "chat_id"}
    assert json_data["receive_id"] == "oc_chat"
    assert json_data["msg_type"] == "text"
    assert json.loads(json_data["content"]) == {"text": "Héllo **there**"}
    assert json_data["uuid"]


@pytest.mark.unit
async def test_send_card_to_user(lark):
    card = {"header": {"title": {"tag": "plain_text", "content": "Pages"}}, "elements": []}
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, {"code": 0, "data": {"message_id": "om_2"}}])

    await lark.send_card("ou_user", card)

    _, _, params, json_data = lark._http.await_args.args
    assert params == {"receive_id_type": "open_id"}
    assert json_data["msg_type"] == "interactive"
    assert json.loads(json_data["content"]) == card


@pytest.mark.unit
async def test_send_failure_propagates(lark):
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, LarkRequestError("bot not in chat", code=230002)])

    with pytest.raises(LarkAPIError):
        await lark.send_text("oc_chat", "hello")


@pytest.mark.unit
async def test_get_message(lark):
    item = {"message_id": "om_parent", "body": {"content": '{"text": "Ticket: PMN-20240315-0001"}'}}
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, {"code": 0, "data": {"items": [item]}}])

    assert await lark.get_message("om_parent") == item
    assert lark._http.await_args.args[1] == f"{MESSAGES_PATH}/om_parent"


@pytest.mark.unit
async def test_get_message_failure_returns_none(lark):
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, LarkRequestError("not found", code=230011)])

    assert await lark.get_message("om_missing") is None


# ===========================
# Users
# ===========================

@pytest.mark.unit
async def test_get_user_info(lark):
    lark._http = AsyncMock(side_effect=[
        TOKEN_BODY,
        {"code": 0, "data": {"user": {
            "name": "Jane Doe",
            "email": "jane@example.com",
            "avatar": {"avatar_240": "https://example.com/a.png"}
        }}}
    ])

    user = await lark.get_user_info({"open_id": "ou_jane"})

    assert user["user_id"] == "ou_jane"
    assert user["name"] == "Jane Doe"
    assert user["avatar"] == "https://example.com/a.png"
    assert user["fallback"] is False
    assert lark._http.await_args.args[2] == {"user_id_type": "open_id"}


@pytest.mark.unit
async def test_get_user_info_falls_back(lark):
    lark._http = AsyncMock(side_effect=[TOKEN_BODY, LarkRequestError("no permission", code=41050)])

    user = await lark.get_user_info("ou_jane")

    assert user["name"] == FALLBACK_USER_NAME
    assert user["fallback"] is True
    assert await lark.get_user_info(None) is None
