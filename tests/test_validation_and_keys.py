from typing import Optional

from typing_extensions import TypedDict

import pytest
from pydantic import BaseModel, Field

from conftest import CART_GET, CART_POST, MENU_ITEM, CartItem, CartItemCreate, OrderFilter
from queryportal.client.keys import (
    canonical_key,
    default_query_key,
    form_id,
    key_matches,
    mutation_id,
    resolve_query_key,
)
from queryportal.contract.paths import fill_template, normalize_path, operation_id, split_path
from queryportal.contract.validation import dump_data, json_schema, sequence_field_names, validate_data


def test_validate_model_success_returns_parsed_data():
    result = validate_data({"menuItemId": "5", "quantity": 2}, CartItemCreate)
    assert result.success
    assert result.data == CartItemCreate(menuItemId=5, quantity=2)
    assert result.message is None


def test_validate_model_failure_lists_dotted_paths():
    result = validate_data([{"id": 1, "menuItemId": "x", "quantity": 1}], list[CartItem])
    assert not result.success
    assert result.errors[0].path == "0.menuItemId"
    assert result.message.startswith("0.menuItemId: ")


def test_missing_field_is_reported_by_name():
    result = validate_data({"quantity": 1}, CartItemCreate)
    assert result.field_messages() == {"menuItemId": "Field required"}


def test_none_shape_accepts_only_empty_input():
    assert validate_data(None, None).success
    assert validate_data({}, None).success
    bad = validate_data({"x": 1}, None)
    assert not bad.success
    assert bad.errors[0].path == "(root)"


def test_typed_dict_and_primitive_shapes():
    class Point(TypedDict):
        x: int
        y: int

    assert validate_data({"x": "1", "y": 2}, Point).data == {"x": 1, "y": 2}
    assert validate_data("3", int).data == 3
    assert not validate_data("three", int).success


def test_dump_data_is_json_compatible():
    items = validate_data([{"id": 1, "menuItemId": 2, "quantity": 3}], list[CartItem]).data
    assert dump_data(items, list[CartItem]) == [{"id": 1, "menuItemId": 2, "quantity": 3}]
    assert dump_data(None, CartItem) is None
    assert json_schema(CartItemCreate)["required"] == ["menuItemId", "quantity"]
    assert json_schema(None) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("/v1/menu/<item_id>", "/api/v1/menu/{item_id}"),
        ("v1/menu/[item_id]", "/api/v1/menu/{item_id}"),
        ("/api//v1/menu/:item_id/", "/api/v1/menu/{item_id}"),
        (["v1", "menu", "{item_id}"], "/api/v1/menu/{item_id}"),
    ],
)
def test_placeholder_styles_normalize(raw, expected):
    assert normalize_path(raw) == expected


def test_operation_id_and_fill_template():
    assert operation_id("POST", split_path("/api/v1/cart")) == "post_api_v1_cart"
    assert fill_template("/api/v1/menu/{item_id}", {"item_id": "a b/c"}) == "/api/v1/menu/a%20b%2Fc"


def test_canonical_key_is_order_independent():
    assert canonical_key({"b": 1, "a": [1, 2]}) == canonical_key({"a": [1, 2], "b": 1})
    assert canonical_key(["cart", 1]) == '["cart",1]'


def test_canonical_key_dumps_models_first():
    model = CartItemCreate(menuItemId=1, quantity=2)
    assert canonical_key(model) == canonical_key({"quantity": 2, "menuItemId": 1})


def test_default_key_includes_contract_and_inputs():
    key = default_query_key(MENU_ITEM, None, {"item_id": 3})
    assert key == ["/api/v1/menu/{item_id}", "GET", None, {"item_id": 3}]
    assert canonical_key(key) != canonical_key(default_query_key(MENU_ITEM, None, {"item_id": 4}))


def test_explicit_query_key_wins():
    assert resolve_query_key(CART_GET, None, None, "cart") == "cart"
    assert resolve_query_key(CART_GET) == default_query_key(CART_GET)


def test_key_matching_by_exact_value_or_list_prefix():
    assert key_matches("orders", "orders")
    assert key_matches(["orders"], ["orders", 1])
    assert not key_matches(["orders", 2], ["orders", 1])
    assert not key_matches("orders", ["orders", 1])
    assert not key_matches(["orders", 1, "x"], ["orders", 1])


def test_mutation_and_form_ids():
    assert mutation_id(CART_POST) == "mutation-api-v1-cart-POST"
    assert form_id(CART_POST) == "form-api-v1-cart-POST"


def test_absent_payload_validates_as_empty_object():
    assert validate_data(None, OrderFilter).data == OrderFilter()
    assert validate_data(None, CartItemCreate).field_messages() == {
        "menuItemId": "Field required",
        "quantity": "Field required",
    }


def test_sequence_fields_are_found_through_optional_and_alias():
    class Search(BaseModel):
        tags: list[str] = []
        ids: Optional[tuple[int, ...]] = Field(default=None, alias="itemIds")
        q: Optional[str] = None

    assert sequence_field_names(Search) == {"tags", "ids", "itemIds"}
    assert sequence_field_names(OrderFilter) == frozenset()
    assert sequence_field_names(list[CartItem]) is None
