"""Client cache store.

One explicit, injectable table of query, mutation and form state. All
state transitions happen synchronously; the only suspension points are
the network call (and the refresh delay of a background refetch). Every
request is registered in the in-flight map before the first suspension,
so concurrent callers with the same key attach to one operation instead
of issuing a second request.

Responses are applied in completion order; a late response for a key
is written into the store like any other (last completed write wins).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from queryportal.client.keys import (
    canonical_key,
    form_id,
    key_matches,
    mutation_id,
    resolve_query_key,
)
from queryportal.client.state import FormState, MutationState, QueryState
from queryportal.client.storage import CacheStorage
from queryportal.client.transport import Fetcher
from queryportal.common.errors import ApiCallError, ContractError, handle_error
from queryportal.contract.endpoint import Endpoint, QueryOptions
from queryportal.contract.validation import dump_data
from queryportal.settings import Settings, get_settings

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


@dataclass(frozen=True)
class QueryUpdate:
    """Rewrite cached query data after a successful mutation."""

    query_key: Any
    updater: Callable[[Any, Any], Any]  # (old_data, response_data) -> new_data


@dataclass(frozen=True)
class MutationOptions:
    on_success: Optional[Callable[[Any, Any], Any]] = None   # (data, payload)
    on_error: Optional[Callable[[Exception, Any], Any]] = None  # (error, payload)
    invalidate_queries: Sequence[Any] = ()
    update_queries: Sequence[QueryUpdate] = field(default_factory=tuple)


@dataclass(frozen=True)
class _Resolved:
    stale_time: float
    cache_time: float
    refresh_delay: float
    enabled: bool
    disable_local_cache: bool
    query_key: Any
    on_success: Optional[Callable[[Any], Any]]
    on_error: Optional[Callable[[Exception], Any]]


@dataclass(frozen=True)
class _Origin:
    endpoint: Endpoint
    payload: Any
    url_params: Any
    options: Optional[QueryOptions]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ApiStore:
    def __init__(
        self,
        fetcher: Fetcher,
        storage: Optional[CacheStorage] = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Optional[Settings] = None,
        base_url: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.storage = storage
        self.settings = settings or get_settings()
        self.base_url = self.settings.backend_url if base_url is None else base_url
        self._clock = clock

        self.queries: dict[str, QueryState] = {}
        self.mutations: dict[str, MutationState] = {}
        self.forms: dict[str, FormState] = {}

        self._in_flight: dict[str, asyncio.Task] = {}
        self._origins: dict[str, _Origin] = {}
        self._listeners: dict[str, list[Listener]] = {}

    # ----------------------------
    # options / keys
    # ----------------------------

    def _resolve(self, endpoint: Endpoint, options: Optional[QueryOptions]) -> _Resolved:
        o = endpoint.query_options.merged(options)
        s = self.settings
        return _Resolved(
            stale_time=s.default_stale_time if o.stale_time is None else o.stale_time,
            cache_time=s.default_cache_time if o.cache_time is None else o.cache_time,
            refresh_delay=s.default_refresh_delay if o.refresh_delay is None else o.refresh_delay,
            enabled=o.enabled is not False,
            disable_local_cache=bool(o.disable_local_cache),
            query_key=o.query_key,
            on_success=o.on_success,
            on_error=o.on_error,
        )

    def query_id(
        self,
        endpoint: Endpoint,
        payload: Any = None,
        url_params: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> str:
        query_key = endpoint.query_options.merged(options).query_key
        return canonical_key(resolve_query_key(endpoint, payload, url_params, query_key))

    # ----------------------------
    # subscriptions
    # ----------------------------

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Call ``listener(key)`` after every state change of ``key``."""

        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners.get(key, ())):
            listener(key)

    # ----------------------------
    # queries
    # ----------------------------

    def _entry(self, key: str, query_key: Any, endpoint: Endpoint, opts: _Resolved) -> QueryState:
        entry = self.queries.get(key)
        if entry is not None:
            return entry

        entry = QueryState(query_key=query_key)
        self.queries[key] = entry
        if self.storage is not None and not opts.disable_local_cache:
            item = self.storage.get(key, max_age=opts.cache_time)
            if item is not None:
                checked = endpoint.validate_response(item.data)
                if checked.success:
                    entry.data = checked.data
                    entry.is_success = True
                    entry.is_cached_data = True
                    entry.status_message = "Showing cached data"
                else:
                    self.storage.remove(key)
        return entry

    async def execute_query(
        self,
        endpoint: Endpoint,
        payload: Any = None,
        url_params: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> Any:
        """Return fresh, cached or newly fetched data for a query.

        Request failures are recorded on the query state (previous data is
        kept) and never raised; the best available data is returned.
        """
        opts = self._resolve(endpoint, options)
        query_key = resolve_query_key(endpoint, payload, url_params, opts.query_key)
        key = canonical_key(query_key)

        if not opts.enabled:
            entry = self.queries.get(key)
            return entry.data if entry else None

        self._origins[key] = _Origin(endpoint, payload, url_params, options)
        entry = self._entry(key, query_key, endpoint, opts)

        if not opts.disable_local_cache and entry.has_data:
            entry.is_cached_data = True
            entry.is_loading = False
            if entry.is_stale(self._clock(), opts.stale_time):
                # stale-while-revalidate
                self._schedule_fetch(endpoint, payload, url_params, opts, key, query_key, opts.refresh_delay)
            else:
                entry.is_fetching = key in self._in_flight
                entry.status_message = "Showing cached data"
                self._notify(key)
            return entry.data

        task = self._in_flight.get(key)
        if task is None:
            task = self._schedule_fetch(endpoint, payload, url_params, opts, key, query_key, 0.0)
        return await asyncio.shield(task)

    def _schedule_fetch(
        self,
        endpoint: Endpoint,
        payload: Any,
        url_params: Any,
        opts: _Resolved,
        key: str,
        query_key: Any,
        delay: float,
    ) -> asyncio.Task:
        existing = self._in_flight.get(key)
        if existing is not None:
            return existing

        entry = self.queries[key]
        entry.is_fetching = True
        entry.is_loading = not entry.has_data
        entry.status_message = "Refreshing data..." if entry.has_data else "Loading data..."

        background = delay > 0 or entry.has_data
        task = asyncio.get_running_loop().create_task(
            self._run_fetch(endpoint, payload, url_params, opts, key, query_key, delay, background)
        )
        self._in_flight[key] = task
        self._notify(key)
        return task

    async def _run_fetch(
        self,
        endpoint: Endpoint,
        payload: Any,
        url_params: Any,
        opts: _Resolved,
        key: str,
        query_key: Any,
        delay: float,
        background: bool,
    ) -> Any:
        current = asyncio.current_task()
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            if not background:
                return await self._fetch(endpoint, payload, url_params, opts, key, query_key)
            try:
                return await self._fetch(endpoint, payload, url_params, opts, key, query_key)
            except Exception as exc:
                logger.warning(
                    "Background refresh failed: %s", exc, extra={"endpoint": endpoint.label}
                )
                entry = self.queries.get(key)
                return entry.data if entry else None
        finally:
            if self._in_flight.get(key) is current:
                del self._in_flight[key]

    async def _fetch(
        self,
        endpoint: Endpoint,
        payload: Any,
        url_params: Any,
        opts: _Resolved,
        key: str,
        query_key: Any,
    ) -> Any:
        started = self.queries.get(key)
        generation = started.invalidations if started is not None else 0
        try:
            prepared = endpoint.build_request(payload, url_params, base_url=self.base_url)
            if not prepared.success:
                raise ApiCallError(prepared.message or "Invalid request", 400)
            result = await self.fetcher(endpoint, prepared.data)
            if not result.success:
                raise ApiCallError(result.message or "Unknown error", result.status_code)
        except ContractError as exc:
            self._record_query_error(key, query_key, exc)
            raise
        except Exception as exc:
            info = handle_error(exc, context=f"Query {endpoint.label}")
            error = exc if isinstance(exc, ApiCallError) else ApiCallError(info.message, info.code)
            entry = self._record_query_error(key, query_key, error)
            if self.storage is not None:
                self.storage.remove(key)
            if opts.on_error is not None:
                await _maybe_await(opts.on_error(error))
            return entry.data

        # a removed entry is recreated: late responses are still written
        entry = self.queries.setdefault(key, QueryState(query_key=query_key))
        entry.data = result.data
        entry.error = None
        entry.is_error = False
        entry.is_success = True
        entry.is_loading = False
        entry.is_fetching = False
        entry.is_cached_data = False
        entry.last_fetch_time = self._clock()
        entry.status_message = "Ready"
        # invalidated while in flight: this response predates it, stay stale
        if entry.invalidations == generation:
            entry.invalidated = False
        if self.storage is not None and not opts.disable_local_cache and not entry.invalidated:
            self.storage.set(key, dump_data(result.data, endpoint.response_schema))
        self._notify(key)

        if opts.on_success is not None:
            await _maybe_await(opts.on_success(result.data))
        return result.data

    def _record_query_error(self, key: str, query_key: Any, error: Exception) -> QueryState:
        # previous data is kept: stale data beats no data
        entry = self.queries.setdefault(key, QueryState(query_key=query_key))
        entry.error = error
        entry.is_error = True
        entry.is_success = False
        entry.is_loading = False
        entry.is_fetching = False
        entry.status_message = f"Error: {error}"
        self._notify(key)
        return entry

    async def refetch_query(self, query_key: Any) -> Any:
        """Re-run the last call made for ``query_key``, bypassing the cache."""

        key = canonical_key(query_key)
        origin = self._origins.get(key)
        if origin is None:
            return None
        options = (origin.options or QueryOptions()).merged(
            QueryOptions(disable_local_cache=True, query_key=query_key)
        )
        return await self.execute_query(origin.endpoint, origin.payload, origin.url_params, options)

    def invalidate_queries(self, *query_keys: Any) -> list[str]:
        """Mark matching queries stale; the next read serves them and refetches."""

        touched: list[str] = []
        for filter_key in query_keys:
            if self.storage is not None:
                self.storage.remove(canonical_key(filter_key))
            for key, entry in self.queries.items():
                if key in touched or not key_matches(filter_key, entry.query_key):
                    continue
                entry.invalidated = True
                entry.invalidations += 1
                entry.is_cached_data = True
                if self.storage is not None:
                    self.storage.remove(key)
                touched.append(key)
        for key in touched:
            self._notify(key)
        return touched

    def remove_query(self, query_key: Any) -> None:
        key = canonical_key(query_key)
        self._origins.pop(key, None)
        if self.queries.pop(key, None) is not None:
            self._notify(key)

    def prune(self) -> list[str]:
        """Remove entries nothing subscribes to and nothing is fetching."""

        removed = [
            key
            for key in self.queries
            if key not in self._listeners and key not in self._in_flight
        ]
        for key in removed:
            del self.queries[key]
            self._origins.pop(key, None)
        return removed

    def get_query_state(self, query_key: Any) -> Optional[QueryState]:
        entry = self.queries.get(canonical_key(query_key))
        return entry.snapshot() if entry else None

    def is_fetching(self, query_key: Any) -> bool:
        return canonical_key(query_key) in self._in_flight

    async def wait_idle(self) -> None:
        """Wait until no fetch (foreground or background) is in flight."""

        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    # ----------------------------
    # mutations
    # ----------------------------

    async def execute_mutation(
        self,
        endpoint: Endpoint,
        payload: Any = None,
        url_params: Any = None,
        options: Optional[MutationOptions] = None,
    ) -> Any:
        """Run a write operation; raises ApiCallError on failure."""

        options = options or MutationOptions()
        mid = mutation_id(endpoint)
        self.mutations[mid] = MutationState(is_pending=True)
        self._notify(mid)

        try:
            prepared = endpoint.build_request(payload, url_params, base_url=self.base_url)
            if not prepared.success:
                raise ApiCallError(prepared.message or "Invalid request", 400)
            result = await self.fetcher(endpoint, prepared.data)
            if not result.success:
                raise ApiCallError(result.message or "Unknown error", result.status_code)
        except ContractError as exc:
            self.mutations[mid] = MutationState(is_error=True, error=exc)
            self._notify(mid)
            raise
        except Exception as exc:
            info = handle_error(exc, context=f"Mutation {endpoint.label}")
            error = exc if isinstance(exc, ApiCallError) else ApiCallError(info.message, info.code)
            self.mutations[mid] = MutationState(is_error=True, error=error)
            self._notify(mid)
            if options.on_error is not None:
                await _maybe_await(options.on_error(error, payload))
            if error is exc:
                raise
            raise error from exc

        data = result.data
        self.mutations[mid] = MutationState(is_success=True, data=data)
        self._notify(mid)

        for update in options.update_queries:
            self._apply_update(update, data)
        if options.invalidate_queries:
            self.invalidate_queries(*options.invalidate_queries)
        if options.on_success is not None:
            await _maybe_await(options.on_success(data, payload))
        return data

    def _apply_update(self, update: QueryUpdate, response_data: Any) -> None:
        key = canonical_key(update.query_key)
        entry = self.queries.get(key)
        if entry is None or not entry.has_data:
            return
        entry.data = update.updater(entry.data, response_data)
        entry.error = None
        entry.is_error = False
        entry.is_success = True
        entry.is_cached_data = False
        entry.last_fetch_time = self._clock()
        entry.status_message = "Ready"
        origin = self._origins.get(key)
        if self.storage is not None and origin is not None:
            self.storage.set(key, dump_data(entry.data, origin.endpoint.response_schema))
        self._notify(key)

    def get_mutation_state(self, endpoint: Endpoint) -> Optional[MutationState]:
        state = self.mutations.get(mutation_id(endpoint))
        return state.snapshot() if state else None

    def reset_mutation(self, endpoint: Endpoint) -> None:
        mid = mutation_id(endpoint)
        self.mutations[mid] = MutationState()
        self._notify(mid)

    # ----------------------------
    # forms
    # ----------------------------

    def get_form_state(self, endpoint: Endpoint) -> FormState:
        return self.forms.setdefault(form_id(endpoint), FormState())

    def set_form_error(self, endpoint: Endpoint, error: Optional[Exception]) -> None:
        fid = form_id(endpoint)
        self.get_form_state(endpoint).form_error = error
        self._notify(fid)

    def clear_form_error(self, endpoint: Endpoint) -> None:
        self.set_form_error(endpoint, None)

    def set_form_submitting(self, endpoint: Endpoint, submitting: bool) -> None:
        self.get_form_state(endpoint).is_submitting = submitting
        self._notify(form_id(endpoint))

    def set_form_query_params(self, endpoint: Endpoint, params: Optional[dict[str, Any]]) -> None:
        fid = form_id(endpoint)
        self.get_form_state(endpoint).query_params = params
        self._notify(fid)
