from typing import Optional

import pytest
from pydantic import BaseModel

from conftest import CART_GET, CART_POST, MENU_ITEM, ORDERS, CartItemCreate, MenuItemParams
from queryportal.common.errors import ContractError
from queryportal.contract.endpoint import Endpoint, QueryOptions, create_endpoint
from queryportal.domain.models import UserRole


def test_path_is_normalized_with_api_prefix():
    assert CART_GET.path == ("api", "v1", "cart")
    assert CART_GET.path_template == "/api/v1/cart"
    assert MENU_ITEM.path_template == "/api/v1/menu/{item_id}"
    assert MENU_ITEM.placeholders == ("item_id",)
    assert MENU_ITEM.operation_id == "get_api_v1_menu_by_item_id"
    assert CART_POST.label == "api/v1/cart:POST"


def test_identity_is_method_and_path():
    same = Endpoint(method="get", path="/api/v1/cart", allowed_roles=["ADMIN"])
    assert same == CART_GET
    assert hash(same) == hash(CART_GET)
    assert CART_GET != CART_POST


def test_error_codes_are_completed_with_defaults():
    assert CART_POST.error_codes[404] == "Menu item not found"
    assert set(CART_POST.error_codes) >= {400, 401, 403, 500}
    with pytest.raises(TypeError):
        CART_POST.error_codes[418] = "teapot"  # type: ignore[index]


def test_public_role_disables_authentication():
    assert MENU_ITEM.requires_authentication() is False
    assert CART_GET.requires_authentication() is True
    assert CART_GET.is_role_allowed([UserRole.CUSTOMER])
    assert not CART_GET.is_role_allowed(["COURIER"])


def test_create_endpoint_keys_by_method():
    endpoints = create_endpoint(method="DELETE", path="v1/cart/:item_id", allowed_roles=["CUSTOMER"], url_schema=MenuItemParams)
    assert list(endpoints) == ["DELETE"]
    assert endpoints["DELETE"].path_template == "/api/v1/cart/{item_id}"


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"method": "FETCH", "path": "/v1/x", "allowed_roles": ["ADMIN"]}, "Unsupported HTTP method"),
        ({"method": "GET", "path": "/v1/x", "allowed_roles": []}, "allowed_roles"),
        ({"method": "GET", "path": "/v1/x/{item_id}", "allowed_roles": ["ADMIN"]}, "url_schema"),
        (
            {"method": "GET", "path": "/v1/x/{other}", "allowed_roles": ["ADMIN"], "url_schema": MenuItemParams},
            "not declared",
        ),
        (
            {"method": "GET", "path": "/v1/{item_id}/{item_id}", "allowed_roles": ["ADMIN"], "url_schema": MenuItemParams},
            "duplicate",
        ),
    ],
)
def test_invalid_contracts_are_rejected(kwargs, message):
    with pytest.raises(ContractError, match=message):
        Endpoint(**kwargs)


def test_build_request_for_write_serializes_body():
    result = CART_POST.build_request({"menuItemId": 7, "quantity": 2}, base_url="http://api.test/")
    assert result.success
    req = result.data
    assert req.method == "POST"
    assert req.url == "http://api.test/api/v1/cart"
    assert req.body == {"menuItemId": 7, "quantity": 2}


def test_build_request_for_read_uses_query_string():
    result = ORDERS.build_request({"status": "open", "page": 2})
    assert result.success
    assert result.data.body is None
    assert result.data.url == "/api/v1/orders?status=open&page=2"


def test_build_request_omits_none_and_repeats_lists():
    class Search(BaseModel):
        tags: list[str] = []
        vegan: Optional[bool] = None
        spicy: bool = False

    search = Endpoint(method="GET", path="/v1/search", allowed_roles=["PUBLIC"], request_schema=Search)
    result = search.build_request({"tags": ["a", "b"]})
    assert result.data.url == "/api/v1/search?tags=a&tags=b&spicy=false"


def test_build_request_fills_placeholders():
    result = MENU_ITEM.build_request(None, {"item_id": "42"})
    assert result.success
    assert result.data.url == "/api/v1/menu/42"


def test_build_request_reports_every_invalid_field():
    result = MENU_ITEM.build_request({"unexpected": 1}, {"item_id": "abc"})
    assert not result.success
    assert "Request validation error" in result.message
    assert "URL parameter validation error" in result.message
    assert {e.path for e in result.errors} == {"(root)", "item_id"}


def test_unresolved_placeholder_is_a_contract_error():
    class LooseParams(BaseModel):
        item_id: Optional[int] = None

    loose = Endpoint(method="GET", path="/v1/menu/{item_id}", allowed_roles=["PUBLIC"], url_schema=LooseParams)
    with pytest.raises(ContractError, match="Unresolved path placeholder"):
        loose.build_request(None, {})


def test_query_options_merge_only_overrides_set_fields():
    base = QueryOptions(stale_time=10, cache_time=100)
    merged = base.merged(QueryOptions(stale_time=1, enabled=False))
    assert merged.stale_time == 1
    assert merged.cache_time == 100
    assert merged.enabled is False
    assert base.merged(None) is base


def test_request_shape_is_the_one_declared():
    assert CART_POST.validate_request({"menuItemId": 1, "quantity": 1}).data == CartItemCreate(menuItemId=1, quantity=1)
    assert not CART_POST.validate_request({"menuItemId": 1, "quantity": 0}).success
