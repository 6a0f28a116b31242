from __future__ import annotations

from typing import Any, Callable, Optional, Union

import pytest
from pydantic import BaseModel, Field

from queryportal.client.store import ApiStore
from queryportal.client.transport import ApiResult
from queryportal.contract.endpoint import Endpoint, EndpointExamples, PreparedRequest
from queryportal.domain.models import UserRole
from queryportal.settings import Settings


class CartItem(BaseModel):
    id: int
    menuItemId: int
    quantity: int


class CartItemCreate(BaseModel):
    menuItemId: int
    quantity: int = Field(ge=1)


class MenuItem(BaseModel):
    id: int
    name: str
    price: float


class MenuItemParams(BaseModel):
    item_id: int


class OrderFilter(BaseModel):
    status: Optional[str] = None
    page: int = 1


class Order(BaseModel):
    id: int
    status: str


CART_GET = Endpoint(
    method="GET",
    path=["v1", "cart"],
    allowed_roles=[UserRole.CUSTOMER],
    response_schema=list[CartItem],
    description="Current cart contents",
)

CART_POST = Endpoint(
    method="POST",
    path=["v1", "cart"],
    allowed_roles=[UserRole.CUSTOMER],
    request_schema=CartItemCreate,
    response_schema=CartItem,
    description="Add an item to the cart",
    field_descriptions={"menuItemId": "Menu item to add", "quantity": "How many"},
    error_codes={404: "Menu item not found"},
    examples=EndpointExamples(
        payloads={"single": {"menuItemId": 7, "quantity": 1}, "pair": {"menuItemId": 8, "quantity": 2}},
    ),
)

MENU_ITEM = Endpoint(
    method="GET",
    path=["v1", "menu", "[item_id]"],
    allowed_roles=[UserRole.PUBLIC],
    url_schema=MenuItemParams,
    response_schema=MenuItem,
    examples=EndpointExamples(
        payloads={"plain": None},
        url_variables={"default": {"item_id": 3}},
    ),
)

ORDERS = Endpoint(
    method="GET",
    path="/v1/orders",
    allowed_roles=[UserRole.CUSTOMER, UserRole.ADMIN],
    request_schema=OrderFilter,
    response_schema=list[Order],
)

ADMIN_STATS = Endpoint(
    method="GET",
    path="/v1/admin/stats",
    allowed_roles=[UserRole.ADMIN],
    response_schema=dict[str, int],
)


Responder = Union[ApiResult, Callable[[PreparedRequest], Any]]


class FakeFetcher:
    """Counts network calls; answers per (method, path template)."""

    def __init__(self, responses: Optional[dict[tuple[str, str], Responder]] = None):
        self.responses: dict[tuple[str, str], Responder] = dict(responses or {})
        self.calls: list[tuple[Endpoint, PreparedRequest]] = []
        self.gate = None  # optional asyncio.Event to hold responses

    def respond(self, endpoint: Endpoint, responder: Responder) -> None:
        self.responses[endpoint.identity] = responder

    def count(self, endpoint: Optional[Endpoint] = None) -> int:
        if endpoint is None:
            return len(self.calls)
        return sum(1 for e, _ in self.calls if e.identity == endpoint.identity)

    async def __call__(self, endpoint: Endpoint, request: PreparedRequest) -> ApiResult:
        self.calls.append((endpoint, request))
        if self.gate is not None:
            await self.gate.wait()
        responder = self.responses.get(endpoint.identity)
        if responder is None:
            return ApiResult.fail("no fake response", 404)
        result = responder if isinstance(responder, ApiResult) else responder(request)
        if not isinstance(result, ApiResult):
            result = ApiResult.ok(result)
        if not result.success:
            return result
        checked = endpoint.validate_response(result.data)
        if not checked.success:
            return ApiResult.fail(f"Response validation error: {checked.message}", 200)
        return ApiResult.ok(checked.data, result.status_code or 200)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        backend_url="http://testserver",
        default_stale_time=60,
        default_cache_time=300,
        default_refresh_delay=0,
        jwt_secret="test-secret",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def store(fetcher: FakeFetcher, clock: FakeClock, settings: Settings) -> ApiStore:
    return ApiStore(fetcher, clock=clock, settings=settings)
