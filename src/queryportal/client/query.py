from __future__ import annotations

from typing import Any, Callable, Optional

from queryportal.client.keys import canonical_key, resolve_query_key
from queryportal.client.state import QueryState
from queryportal.client.store import ApiStore
from queryportal.contract.endpoint import Endpoint, QueryOptions


class ApiQuery:
    """A read operation bound to one store entry.

    The hook owns nothing: state lives in the store and is shared with every
    other hook built for the same key.
    """

    def __init__(
        self,
        store: ApiStore,
        endpoint: Endpoint,
        payload: Any = None,
        url_params: Any = None,
        options: Optional[QueryOptions] = None,
    ):
        self.store = store
        self.endpoint = endpoint
        self.payload = payload
        self.url_params = url_params
        self.options = options
        merged = endpoint.query_options.merged(options)
        self.query_key = resolve_query_key(endpoint, payload, url_params, merged.query_key)
        self.key = canonical_key(self.query_key)
        self._unsubscribe: list[Callable[[], None]] = []

    @property
    def state(self) -> QueryState:
        return self.store.get_query_state(self.query_key) or QueryState(query_key=self.query_key)

    result = state

    @property
    def data(self) -> Any:
        return self.state.data

    async def fetch(self) -> Any:
        return await self.store.execute_query(self.endpoint, self.payload, self.url_params, self.options)

    async def refetch(self) -> Any:
        options = (self.options or QueryOptions()).merged(QueryOptions(disable_local_cache=True))
        return await self.store.execute_query(self.endpoint, self.payload, self.url_params, options)

    def remove(self) -> None:
        self.store.remove_query(self.query_key)

    def subscribe(self, listener: Callable[[QueryState], None]) -> Callable[[], None]:
        unsubscribe = self.store.subscribe(self.key, lambda _key: listener(self.state))
        self._unsubscribe.append(unsubscribe)
        return unsubscribe

    def close(self) -> None:
        while self._unsubscribe:
            self._unsubscribe.pop()()
