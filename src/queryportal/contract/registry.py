from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, Union

from queryportal.common.errors import ContractError
from queryportal.contract.endpoint import Endpoint
from queryportal.contract.paths import normalize_path, split_path, with_api_prefix
from queryportal.contract.validation import json_schema


class EndpointRegistry:
    """Static registry of contracts keyed by ``(method, path template)``.

    Contracts are registered once at import time and live for the process.
    """

    def __init__(self, endpoints: Iterable[Endpoint] = ()):
        self._by_identity: dict[tuple[str, str], Endpoint] = {}
        self._tree: dict[str, Any] = {}
        for endpoint in endpoints:
            self.register(endpoint)

    def register(self, endpoint: Union[Endpoint, Mapping[str, Endpoint]]) -> None:
        if not isinstance(endpoint, Endpoint):
            # accepts create_endpoint(...) output
            for item in endpoint.values():
                self.register(item)
            return

        if endpoint.identity in self._by_identity:
            method, path = endpoint.identity
            raise ContractError(f"Endpoint already registered: {method} {path}")
        self._by_identity[endpoint.identity] = endpoint

        node = self._tree
        for seg in endpoint.path:
            node = node.setdefault(seg, {})
        node[endpoint.method] = endpoint

    def get(self, method: str, path: Union[str, Sequence[str]]) -> Optional[Endpoint]:
        return self._by_identity.get((method.upper(), normalize_path(path)))

    def get_endpoint_by_path(self, path: Sequence[str], method: str) -> Endpoint:
        """Walk nested path segments, then the method, like a section tree."""

        node: Any = self._tree
        for key in (*with_api_prefix(split_path(path)), method.upper()):
            if not isinstance(node, dict) or key not in node:
                raise ContractError(f"No endpoint for {method.upper()} {'/'.join(path)}")
            node = node[key]
        return node

    def __iter__(self) -> Iterator[Endpoint]:
        # stable ordering = stable listings and docs
        return iter(sorted(self._by_identity.values(), key=lambda e: (e.path_template, e.method)))

    def __len__(self) -> int:
        return len(self._by_identity)

    def __contains__(self, endpoint: object) -> bool:
        return isinstance(endpoint, Endpoint) and endpoint.identity in self._by_identity

    def filter(
        self,
        method: Optional[str] = None,
        path_contains: Optional[str] = None,
    ) -> list[Endpoint]:
        out = []
        for e in self:
            if method and e.method != method.upper():
                continue
            if path_contains and path_contains not in e.path_template:
                continue
            out.append(e)
        return out

    def describe(self) -> list[dict[str, Any]]:
        return [describe_endpoint(e) for e in self]


def describe_endpoint(endpoint: Endpoint) -> dict[str, Any]:
    """JSON-ready documentation for one contract."""

    opts = endpoint.query_options
    return {
        "operation_id": endpoint.operation_id,
        "method": endpoint.method,
        "path": endpoint.path_template,
        "description": endpoint.description,
        "allowed_roles": list(endpoint.allowed_roles),
        "requires_authentication": endpoint.requires_authentication(),
        "field_descriptions": dict(endpoint.field_descriptions),
        "error_codes": {str(k): v for k, v in sorted(endpoint.error_codes.items())},
        "cache": {
            "stale_time": opts.stale_time,
            "cache_time": opts.cache_time,
            "query_key": opts.query_key,
        },
        "examples": {
            "payloads": _jsonable(endpoint.examples.payloads),
            "url_variables": _jsonable(endpoint.examples.url_variables),
            "responses": _jsonable(endpoint.examples.responses),
        },
        "schemas": {
            "request": json_schema(endpoint.request_schema),
            "response": json_schema(endpoint.response_schema),
            "url": json_schema(endpoint.url_schema),
        },
    }


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
