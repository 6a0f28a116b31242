import pytest

from conftest import CART_GET, CART_POST, ORDERS
from queryportal.client.form import ApiForm, ApiQueryForm
from queryportal.client.keys import form_id
from queryportal.client.mutation import ApiMutation
from queryportal.client.notifications import NotificationInvalidator
from queryportal.client.query import ApiQuery
from queryportal.client.store import MutationOptions
from queryportal.client.transport import ApiResult
from queryportal.common.errors import ApiCallError
from queryportal.contract.endpoint import QueryOptions

pytestmark = pytest.mark.asyncio

ITEM = {"id": 1, "menuItemId": 7, "quantity": 1}


async def test_scenario_b_form_missing_menu_item_id_never_hits_network(store, fetcher):
    fetcher.respond(CART_POST, ApiResult.ok(ITEM))
    form = ApiForm(store, CART_POST, default_values={"quantity": 1})

    result = await form.submit_form()

    assert result is None
    assert fetcher.count() == 0
    assert "menuItemId" in form.field_errors
    assert form.form_error is None
    assert form.validation_error() is not None
    assert store.get_mutation_state(CART_POST) is None


async def test_form_submits_validated_values(store, fetcher):
    fetcher.respond(CART_POST, ApiResult.ok(ITEM))
    form = ApiForm(store, CART_POST, default_values={"quantity": 1})
    form.set_value("menuItemId", 7)

    result = await form.submit_form()

    assert result.id == 1
    assert fetcher.calls[0][1].body == {"menuItemId": 7, "quantity": 1}
    assert form.is_submit_successful
    assert form.field_errors == {}
    assert not form.is_submitting


async def test_form_subscribers_see_submitting_flip(store, fetcher):
    fetcher.respond(CART_POST, ApiResult.ok(ITEM))
    form = ApiForm(store, CART_POST, default_values={"menuItemId": 7, "quantity": 1})
    seen = []
    store.subscribe(form_id(CART_POST), lambda key: seen.append(form.is_submitting))

    await form.submit_form()

    assert seen == [False, True, False]


async def test_server_rejection_is_a_root_level_form_error(store, fetcher):
    fetcher.respond(CART_POST, ApiResult.fail("[api/v1/cart:POST]: Menu item not found", 404))
    form = ApiForm(store, CART_POST, default_values={"menuItemId": 3, "quantity": 1})

    assert await form.submit_form() is None

    assert isinstance(form.form_error, ApiCallError)
    assert form.error_message == "[api/v1/cart:POST]: Menu item not found"
    assert form.field_errors == {}
    assert form.submit_error is form.form_error

    form.clear_form_error()
    assert form.form_error is None


async def test_form_reset_restores_defaults(store, fetcher):
    form = ApiForm(store, CART_POST, default_values={"quantity": 1})
    form.set_value("menuItemId", 5)
    form.set_form_error(ApiCallError("stale"))

    form.reset()

    assert form.get_values() == {"quantity": 1}
    assert form.form_error is None
    assert form.mutation.state.status == "idle"


async def test_form_values_by_dotted_path(store):
    form = ApiForm(store, CART_POST, default_values={"extras": {"sauce": "none"}})
    form.set_value("extras.sauce", "chili")
    form.set_value("notes.kitchen", "quick")

    assert form.get_value("extras.sauce") == "chili"
    assert form.get_values()["notes"] == {"kitchen": "quick"}
    assert form.get_value("missing.path") is None


async def test_form_mutation_options_invalidate_queries(store, fetcher):
    fetcher.respond(CART_GET, ApiResult.ok([]))
    fetcher.respond(CART_POST, ApiResult.ok(ITEM))
    cart = ApiQuery(store, CART_GET)
    await cart.fetch()

    form = ApiForm(
        store,
        CART_POST,
        default_values={"menuItemId": 7, "quantity": 1},
        mutation_options=MutationOptions(invalidate_queries=[cart.query_key]),
    )
    await form.submit_form()

    assert cart.state.invalidated


async def test_query_form_uses_values_as_query_payload(store, fetcher):
    fetcher.respond(ORDERS, ApiResult.ok([{"id": 1, "status": "open"}]))
    search = ApiQueryForm(store, ORDERS, default_values={"page": 1})
    search.set_value("status", "open")

    data = await search.submit()

    assert data[0].status == "open"
    assert search.query_params == {"status": "open", "page": 1}
    assert fetcher.calls[0][1].url.endswith("/api/v1/orders?status=open&page=1")

    search.set_value("page", "first")
    assert await search.submit() is None
    assert "page" in search.field_errors
    assert fetcher.count() == 1


async def test_api_query_hook_tracks_store_entry(store, fetcher):
    fetcher.respond(CART_GET, ApiResult.ok([ITEM]))
    query = ApiQuery(store, CART_GET)
    seen = []
    query.subscribe(lambda state: seen.append(state.status))

    assert query.state.status == "idle"
    await query.fetch()
    assert query.data[0].id == 1
    assert seen == ["loading", "success"]

    await query.refetch()
    assert fetcher.count() == 2

    query.close()
    query.remove()
    assert query.state.data is None
    assert len(seen) == 4


async def test_api_query_honors_enabled(store, fetcher):
    fetcher.respond(CART_GET, ApiResult.ok([]))
    query = ApiQuery(store, CART_GET, options=QueryOptions(enabled=False))
    assert await query.fetch() is None
    assert fetcher.count() == 0


async def test_fire_and_forget_mutation_keeps_errors_in_state(store, fetcher):
    fetcher.respond(CART_POST, ApiResult.fail("down", 503))
    mutation = ApiMutation(store, CART_POST)

    assert await mutation.mutate({"menuItemId": 7, "quantity": 1}) is None
    assert mutation.state.status == "error"
    assert mutation.state.error.status_code == 503

    with pytest.raises(ApiCallError):
        await mutation.mutate_async({"menuItemId": 7, "quantity": 1})

    mutation.reset()
    assert mutation.state.status == "idle"


async def test_notifications_invalidate_routed_queries(store, fetcher):
    fetcher.respond(ORDERS, ApiResult.ok([]))
    await store.execute_query(ORDERS, options=QueryOptions(query_key=["orders", 1]))
    invalidator = NotificationInvalidator(store, {"order-updated": [["orders"]]})

    assert invalidator.handle({"channel": "menu-updated"}) == []
    touched = invalidator.handle({"channel": "order-updated", "data": {"id": 1}})

    assert len(touched) == 1
    assert store.get_query_state(["orders", 1]).invalidated


async def test_notifications_consume_async_source(store, fetcher):
    fetcher.respond(ORDERS, ApiResult.ok([]))
    await store.execute_query(ORDERS, options=QueryOptions(query_key="orders"))
    invalidator = NotificationInvalidator(store, {"orders": ["orders"]})

    async def source():
        yield {"channel": "orders"}
        yield {"channel": "unknown"}

    assert await invalidator.consume(source()) == 2
    assert store.get_query_state("orders").invalidated
