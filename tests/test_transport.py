import json

import httpx
import pytest

from conftest import CART_GET, CART_POST, MENU_ITEM
from queryportal.client.transport import NO_TOKEN_MESSAGE, HttpTransport

pytestmark = pytest.mark.asyncio


def transport_with(handler, token="tok"):
    seen = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return HttpTransport(client, token_provider=(lambda: token)), seen


async def test_success_envelope_is_unwrapped_and_validated():
    transport, seen = transport_with(
        lambda r: httpx.Response(200, json={"success": True, "data": [{"id": 1, "menuItemId": 2, "quantity": 3}]})
    )
    request = CART_GET.build_request(base_url="http://api.test").data

    result = await transport(CART_GET, request)

    assert result.success
    assert result.data[0].menuItemId == 2
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert str(seen[0].url) == "http://api.test/api/v1/cart"


async def test_write_sends_json_body():
    transport, seen = transport_with(
        lambda r: httpx.Response(200, json={"success": True, "data": {"id": 1, "menuItemId": 2, "quantity": 3}})
    )
    request = CART_POST.build_request({"menuItemId": 2, "quantity": 3}, base_url="http://api.test").data

    await transport(CART_POST, request)

    assert seen[0].method == "POST"
    assert json.loads(seen[0].content) == {"menuItemId": 2, "quantity": 3}


async def test_missing_token_short_circuits_before_network():
    transport, seen = transport_with(lambda r: httpx.Response(200, json={}), token=None)
    result = await transport(CART_GET, CART_GET.build_request(base_url="http://api.test").data)

    assert not result.success
    assert result.message == NO_TOKEN_MESSAGE
    assert result.status_code == 401
    assert seen == []


async def test_public_endpoint_sends_no_credential():
    transport, seen = transport_with(
        lambda r: httpx.Response(200, json={"success": True, "data": {"id": 3, "name": "Soup", "price": 2}}),
        token=None,
    )
    result = await transport(MENU_ITEM, MENU_ITEM.build_request(None, {"item_id": 3}, base_url="http://api.test").data)

    assert result.success
    assert "Authorization" not in seen[0].headers


async def test_error_status_carries_server_message():
    transport, _ = transport_with(
        lambda r: httpx.Response(403, json={"success": False, "message": "[api/v1/cart:GET]: Not authorized", "errorCode": 403})
    )
    result = await transport(CART_GET, CART_GET.build_request(base_url="http://api.test").data)

    assert (result.success, result.status_code) == (False, 403)
    assert result.message == "[api/v1/cart:GET]: Not authorized"


async def test_error_status_without_envelope_uses_reason():
    transport, _ = transport_with(lambda r: httpx.Response(502, text="bad gateway"))
    result = await transport(CART_GET, CART_GET.build_request(base_url="http://api.test").data)

    assert result.message == "API error: 502 Bad Gateway"


async def test_network_failure_is_a_failed_result():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport, _ = transport_with(refuse)
    result = await transport(CART_GET, CART_GET.build_request(base_url="http://api.test").data)

    assert not result.success
    assert result.message.startswith("API request failed: ")


async def test_response_shape_mismatch_is_a_failed_result():
    transport, _ = transport_with(lambda r: httpx.Response(200, json={"success": True, "data": {"unexpected": 1}}))
    result = await transport(CART_GET, CART_GET.build_request(base_url="http://api.test").data)

    assert not result.success
    assert result.message.startswith("Response validation error")


async def test_transport_from_settings_uses_timeout(settings):
    transport = HttpTransport.from_settings(settings.model_copy(update={"request_timeout": 2.5}))
    try:
        assert transport.client.timeout.read == 2.5
        assert transport.client.base_url.host == "testserver"
    finally:
        await transport.aclose()
