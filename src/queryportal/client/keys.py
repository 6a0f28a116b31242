"""Pure cache-key derivation.

A *query key* is any JSON-able value (``"orders"``, ``["cart", 3]``) or
the default derived from a contract and its inputs. The *canonical key*
is its stable serialization and indexes the store.
"""

from __future__ import annotations

import json
from typing import Any

from queryportal.contract.endpoint import Endpoint


def _plain(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=repr)
    return value


def canonical_key(query_key: Any) -> str:
    return json.dumps(_plain(query_key), sort_keys=True, separators=(",", ":"), default=str)


def default_query_key(endpoint: Endpoint, payload: Any = None, url_params: Any = None) -> list[Any]:
    return [endpoint.path_template, endpoint.method, _plain(payload), _plain(url_params)]


def resolve_query_key(
    endpoint: Endpoint,
    payload: Any = None,
    url_params: Any = None,
    query_key: Any = None,
) -> Any:
    """Explicit query key wins over the derived one."""
    if query_key is not None:
        return query_key
    return default_query_key(endpoint, payload, url_params)


def key_matches(filter_key: Any, query_key: Any) -> bool:
    """Exact match, or list prefix match (``["orders"]`` matches ``["orders", 1]``)."""

    if canonical_key(filter_key) == canonical_key(query_key):
        return True
    f, q = _plain(filter_key), _plain(query_key)
    if isinstance(f, list) and isinstance(q, list) and 0 < len(f) <= len(q):
        return canonical_key(q[: len(f)]) == canonical_key(f)
    return False


def mutation_id(endpoint: Endpoint) -> str:
    return f"mutation-{'-'.join(endpoint.path)}-{endpoint.method}"


def form_id(endpoint: Endpoint) -> str:
    return f"form-{'-'.join(endpoint.path)}-{endpoint.method}"
